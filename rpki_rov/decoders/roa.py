#!/usr/bin/env python3
"""
ROA Payload Extraction

Interprets the encapsulated content of a verified signed object as a
Route Origin Authorization (RFC 9582):

    RouteOriginAttestation ::= SEQUENCE {
        version [0] INTEGER DEFAULT 0,
        asID ASID,
        ipAddrBlocks SEQUENCE (SIZE(1..2)) OF ROAIPAddressFamily }

A single bad prefix entry rejects the whole object: the signature covers
the object as a unit, so partial acceptance would misstate what was
signed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union

from cryptography import x509

from rpki_rov.decoders import der
from rpki_rov.decoders.signed_object import SignedObject, decode_signed_object
from rpki_rov.models import VRP, AddressFamily, IPPrefix
from rpki_rov.utils.error_handling import (
    FileNotFound, InvalidPrefixEncoding, MalformedEncoding, RPKIError,
)
from rpki_rov.utils.logging import LoggingTimer


logger = logging.getLogger(__name__)

OID_ROUTE_ORIGIN_AUTHZ = "1.2.840.113549.1.9.16.1.24"

ROA_VERSION = 0
MAX_ASN = 4294967295


@dataclass(frozen=True)
class ROAEntry:
    """One (prefix, maxLength) pair as it appeared in the ROA"""
    prefix: IPPrefix
    max_length: int
    explicit_max_length: bool


@dataclass(frozen=True)
class ROAObject:
    """Decoded and verified ROA; converted to VRPs and then discarded"""
    as_id: int
    entries: Tuple[ROAEntry, ...]
    certificate: x509.Certificate
    certificate_der: bytes
    signing_time: Optional[datetime] = None

    @property
    def address_families(self) -> Tuple[AddressFamily, ...]:
        families = []
        for entry in self.entries:
            if entry.prefix.family not in families:
                families.append(entry.prefix.family)
        return tuple(families)

    def to_vrps(self) -> List[VRP]:
        return [VRP(self.as_id, entry.prefix, entry.max_length) for entry in self.entries]


def decode_prefix(element: der.DERElement, family: AddressFamily) -> IPPrefix:
    """Turn an RFC 3779 IPAddress BIT STRING into a canonical IPPrefix"""
    try:
        unused, data = element.as_bit_string()
    except MalformedEncoding as e:
        raise InvalidPrefixEncoding(e.message, offset=element.offset)

    length = len(data) * 8 - unused
    if length > family.width:
        raise InvalidPrefixEncoding(
            f"Prefix length {length} exceeds {family.width} for {family.label}",
            offset=element.offset
        )
    if unused and data[-1] & ((1 << unused) - 1):
        raise InvalidPrefixEncoding("Non-zero padding bits in prefix", offset=element.offset)

    network = int.from_bytes(data.ljust(family.width // 8, b'\x00'), 'big')
    try:
        return IPPrefix(family, network, length)
    except ValueError as e:
        raise InvalidPrefixEncoding(str(e), offset=element.offset)


def _decode_family(element: der.DERElement) -> AddressFamily:
    try:
        afi_bytes = element.as_octets()
    except MalformedEncoding as e:
        raise InvalidPrefixEncoding(e.message, offset=element.offset)
    # Two octets of AFI, optionally followed by a SAFI octet (RFC 6482)
    if len(afi_bytes) not in (2, 3):
        raise InvalidPrefixEncoding(f"Address family of {len(afi_bytes)} octets",
                                    offset=element.offset)
    try:
        return AddressFamily.from_afi(int.from_bytes(afi_bytes[:2], 'big'))
    except ValueError as e:
        raise InvalidPrefixEncoding(str(e), offset=element.offset)


def _decode_address(element: der.DERElement, family: AddressFamily) -> ROAEntry:
    if element.tag != der.SEQUENCE:
        raise MalformedEncoding("ROAIPAddress is not a SEQUENCE", offset=element.offset)
    fields = element.children()
    prefix = decode_prefix(fields.read(der.BIT_STRING, "address"), family)

    max_length_element = fields.read_optional(der.INTEGER)
    fields.expect_end("ROAIPAddress")
    if max_length_element is None:
        return ROAEntry(prefix, prefix.length, explicit_max_length=False)

    max_length = max_length_element.as_integer()
    if not prefix.length <= max_length <= family.width:
        raise InvalidPrefixEncoding(
            f"maxLength {max_length} invalid for prefix {prefix}",
            offset=max_length_element.offset
        )
    return ROAEntry(prefix, max_length, explicit_max_length=True)


def extract_roa_payload(content: Union[bytes, memoryview]) -> Tuple[int, Tuple[ROAEntry, ...]]:
    """Decode the RouteOriginAttestation payload into (asID, entries)"""
    fields = der.read_single(content, der.SEQUENCE, "RouteOriginAttestation").children()

    version_wrapper = fields.read_optional(der.context_tag(0))
    if version_wrapper is not None:
        version_reader = version_wrapper.children()
        version = version_reader.read(der.INTEGER, "version").as_integer()
        version_reader.expect_end("version")
        if version != ROA_VERSION:
            raise MalformedEncoding(f"Unsupported ROA version {version}",
                                    offset=version_wrapper.offset)

    as_element = fields.read(der.INTEGER, "asID")
    as_id = as_element.as_integer()
    if not 0 <= as_id <= MAX_ASN:
        raise MalformedEncoding(f"asID {as_id} outside 0..{MAX_ASN}", offset=as_element.offset)

    blocks = fields.read(der.SEQUENCE, "ipAddrBlocks").children()
    fields.expect_end("RouteOriginAttestation")

    entries = []
    seen_families = set()
    for block in blocks:
        if block.tag != der.SEQUENCE:
            raise MalformedEncoding("ROAIPAddressFamily is not a SEQUENCE", offset=block.offset)
        block_fields = block.children()
        family = _decode_family(block_fields.read(der.OCTET_STRING, "addressFamily"))
        if family in seen_families:
            raise MalformedEncoding(f"Address family {family.label} listed twice",
                                    offset=block.offset)
        seen_families.add(family)

        addresses = block_fields.read(der.SEQUENCE, "addresses").children()
        block_fields.expect_end("ROAIPAddressFamily")
        if addresses.at_end():
            raise MalformedEncoding(f"No addresses for {family.label}", offset=block.offset)
        for address in addresses:
            entries.append(_decode_address(address, family))

    if not entries:
        raise MalformedEncoding("ROA lists no address families")

    return as_id, tuple(entries)


def decode_roa(data: Union[bytes, memoryview], now: Optional[datetime] = None) -> ROAObject:
    """Verify the signed envelope, then extract the ROA payload"""
    signed_object: SignedObject = decode_signed_object(data, now)
    if signed_object.content_type != OID_ROUTE_ORIGIN_AUTHZ:
        raise MalformedEncoding(
            f"Encapsulated content type {signed_object.content_type} is not a ROA"
        )
    as_id, entries = extract_roa_payload(signed_object.content)
    return ROAObject(
        as_id=as_id,
        entries=entries,
        certificate=signed_object.certificate,
        certificate_der=signed_object.certificate_der,
        signing_time=signed_object.signing_time,
    )


def load_roa_file(path: Union[str, Path], now: Optional[datetime] = None) -> ROAObject:
    """Read and decode a ROA file from disk"""
    path = Path(path)
    if not path.is_file():
        raise FileNotFound(f"ROA file not found: {path}")

    with LoggingTimer(logger, f"decode {path.name}", level=logging.DEBUG,
                      failure_level=logging.DEBUG):
        try:
            data = path.read_bytes()
        except OSError as e:
            raise FileNotFound(f"Cannot read ROA file {path}: {e}")
        try:
            roa = decode_roa(data, now)
        except RPKIError as e:
            logger.warning(f"Rejected ROA {path}: {e.kind}: {e.message}")
            raise

    logger.info(f"Decoded ROA {path.name}: AS{roa.as_id}, {len(roa.entries)} prefixes")
    return roa
