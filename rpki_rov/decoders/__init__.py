"""
RPKI signed object decoders

DER primitives, the CMS signed-object unwrapper and the ROA payload
extractor.
"""

from .roa import ROAEntry, ROAObject, decode_roa, extract_roa_payload, load_roa_file
from .signed_object import (
    SignedObject, check_certificate_validity, decode_signed_object,
    unwrap_signed_object, verify_signed_object,
)

__all__ = [
    'ROAEntry', 'ROAObject', 'decode_roa', 'extract_roa_payload', 'load_roa_file',
    'SignedObject', 'check_certificate_validity', 'decode_signed_object',
    'unwrap_signed_object', 'verify_signed_object',
]
