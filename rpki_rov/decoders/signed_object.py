#!/usr/bin/env python3
"""
RPKI Signed Object Unwrapper

Parses the CMS signed-data envelope used by RPKI signed objects
(RFC 6488) and checks that the object is internally self-consistent:

- Exactly one digest algorithm, one embedded end-entity certificate,
  one encapsulated content and one signer
- Digest and signature algorithms restricted to a small allow-list
- Message digest attribute matches the encapsulated content
- Signature verifies with the embedded certificate's public key
- Certificate validity period covers the evaluation time

The stages are exposed separately (`unwrap_signed_object`,
`verify_signed_object`, `check_certificate_validity`) so a caller can
add certification-path validation without touching this contract.
Path validation to a trust anchor is not performed here.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from rpki_rov.decoders import der
from rpki_rov.utils.error_handling import (
    CertificateExpired, CertificateNotYetValid, DigestMismatch,
    MalformedEncoding, SignatureInvalid, UnsupportedAlgorithm,
)


logger = logging.getLogger(__name__)

OID_SIGNED_DATA = "1.2.840.113549.1.7.2"
OID_CONTENT_TYPE_ATTR = "1.2.840.113549.1.9.3"
OID_MESSAGE_DIGEST_ATTR = "1.2.840.113549.1.9.4"
OID_SIGNING_TIME_ATTR = "1.2.840.113549.1.9.5"
OID_BINARY_SIGNING_TIME_ATTR = "1.2.840.113549.1.9.16.2.46"

OID_SHA256 = "2.16.840.1.101.3.4.2.1"
OID_RSA_ENCRYPTION = "1.2.840.113549.1.1.1"
OID_SHA256_WITH_RSA = "1.2.840.113549.1.1.11"
OID_ECDSA_WITH_SHA256 = "1.2.840.10045.4.3.2"

DIGEST_ALGORITHMS = {
    OID_SHA256: "sha256",
}

SIGNATURE_ALGORITHMS = {
    OID_RSA_ENCRYPTION: "rsa",
    OID_SHA256_WITH_RSA: "rsa",
    OID_ECDSA_WITH_SHA256: "ecdsa",
}

SIGNED_DATA_VERSION = 3
SIGNER_INFO_VERSION = 3


@dataclass(frozen=True)
class SignedObject:
    """Structurally decoded signed object; not yet cryptographically checked"""
    content_type: str
    content: bytes
    certificate: x509.Certificate
    certificate_der: bytes
    signer_key_identifier: bytes
    digest_algorithm: str
    signature_algorithm: str
    signed_attributes: Optional[bytes]
    message_digest: Optional[bytes]
    signature: bytes
    signing_time: Optional[datetime] = None


def _read_algorithm(element: der.DERElement, allowed: dict, what: str) -> str:
    """Decode an AlgorithmIdentifier and check it against `allowed`"""
    reader = element.children()
    oid = reader.read(der.OBJECT_IDENTIFIER, f"{what} OID").as_oid()
    parameters = reader.read_optional(der.NULL)
    if parameters is not None:
        parameters.expect_null()
    reader.expect_end(what)
    if oid not in allowed:
        raise UnsupportedAlgorithm(f"{what} {oid} is not supported", offset=element.offset)
    return oid


def _read_certificate(certificates: der.DERElement) -> tuple:
    reader = certificates.children()
    if reader.at_end():
        raise MalformedEncoding("Signed object carries no certificate", offset=certificates.offset)
    element = reader.read(der.SEQUENCE, "Certificate")
    if not reader.at_end():
        raise MalformedEncoding("Signed object must carry exactly one certificate",
                                offset=reader.position)
    certificate_der = bytes(element.encoded)
    try:
        certificate = x509.load_der_x509_certificate(certificate_der)
    except ValueError as e:
        raise MalformedEncoding(f"Embedded certificate could not be parsed: {e}",
                                offset=element.offset)
    return certificate, certificate_der


def _binary_signing_time(value: der.DERElement) -> datetime:
    """RFC 6019 BinarySigningTime: non-negative seconds since the epoch"""
    seconds = value.as_integer()
    if seconds < 0:
        raise MalformedEncoding(f"Negative binary signing time {seconds}", offset=value.offset)
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise MalformedEncoding(f"Binary signing time {seconds} out of range",
                                offset=value.offset)


def _read_signed_attributes(element: der.DERElement, content_type: str) -> tuple:
    """Return (message_digest, signing_time) from the signed attributes"""
    message_digest = None
    signing_time = None
    seen = set()
    reader = element.children()
    if reader.at_end():
        raise MalformedEncoding("Empty signed attributes", offset=element.offset)

    for attribute in reader:
        if attribute.tag != der.SEQUENCE:
            raise MalformedEncoding("Signed attribute is not a SEQUENCE", offset=attribute.offset)
        fields = attribute.children()
        attr_type = fields.read(der.OBJECT_IDENTIFIER, "attribute type").as_oid()
        values = fields.read(der.SET, "attribute values")
        fields.expect_end("signed attribute")
        if attr_type in seen:
            raise MalformedEncoding(f"Duplicate signed attribute {attr_type}",
                                    offset=attribute.offset)
        seen.add(attr_type)

        value_reader = values.children()
        value = value_reader.read()
        value_reader.expect_end("attribute values")

        if attr_type == OID_CONTENT_TYPE_ATTR:
            if value.as_oid() != content_type:
                raise MalformedEncoding("Content-type attribute does not match encapsulated content",
                                        offset=value.offset)
        elif attr_type == OID_MESSAGE_DIGEST_ATTR:
            message_digest = value.as_octets()
        elif attr_type == OID_SIGNING_TIME_ATTR:
            signing_time = value.as_time()
        elif attr_type == OID_BINARY_SIGNING_TIME_ATTR:
            binary_time = _binary_signing_time(value)
            signing_time = signing_time or binary_time
        else:
            logger.debug(f"Ignoring signed attribute {attr_type}")

    if OID_CONTENT_TYPE_ATTR not in seen:
        raise MalformedEncoding("Signed attributes lack a content-type attribute",
                                offset=element.offset)
    if message_digest is None:
        raise MalformedEncoding("Signed attributes lack a message-digest attribute",
                                offset=element.offset)
    return message_digest, signing_time


def unwrap_signed_object(data: Union[bytes, memoryview]) -> SignedObject:
    """
    Decode the signed-data envelope without verifying it.

    Raises MalformedEncoding on structural violations and
    UnsupportedAlgorithm for algorithms outside the allow-list.
    """
    content_info = der.read_single(data, der.SEQUENCE, "ContentInfo").children()
    outer_type = content_info.read(der.OBJECT_IDENTIFIER, "content type").as_oid()
    if outer_type != OID_SIGNED_DATA:
        raise MalformedEncoding(f"Content type {outer_type} is not signed-data", offset=0)
    wrapper = content_info.read(der.context_tag(0), "[0] content")
    content_info.expect_end("ContentInfo")

    wrapped = wrapper.children()
    signed_data_element = wrapped.read(der.SEQUENCE, "SignedData")
    wrapped.expect_end("SignedData wrapper")
    signed_data = signed_data_element.children()

    version_element = signed_data.read(der.INTEGER, "SignedData version")
    if version_element.as_integer() != SIGNED_DATA_VERSION:
        raise MalformedEncoding(f"Unsupported SignedData version {version_element.as_integer()}",
                                offset=version_element.offset)

    digest_set = signed_data.read(der.SET, "digestAlgorithms").children()
    if digest_set.at_end():
        raise MalformedEncoding("Empty digestAlgorithms set", offset=digest_set.position)
    digest_algorithm = _read_algorithm(digest_set.read(der.SEQUENCE, "AlgorithmIdentifier"),
                                       DIGEST_ALGORITHMS, "Digest algorithm")
    if not digest_set.at_end():
        raise MalformedEncoding("Exactly one digest algorithm is allowed", offset=digest_set.position)

    encap = signed_data.read(der.SEQUENCE, "EncapsulatedContentInfo").children()
    content_type = encap.read(der.OBJECT_IDENTIFIER, "eContentType").as_oid()
    explicit = encap.read_optional(der.context_tag(0))
    if explicit is None:
        raise MalformedEncoding("Encapsulated content is absent", offset=encap.position)
    encap.expect_end("EncapsulatedContentInfo")
    content_reader = explicit.children()
    content = content_reader.read(der.OCTET_STRING, "eContent").as_octets()
    content_reader.expect_end("eContent")

    certificates = signed_data.read_optional(der.context_tag(0))
    if certificates is None:
        raise MalformedEncoding("Signed object carries no certificate", offset=signed_data.position)
    certificate, certificate_der = _read_certificate(certificates)

    if signed_data.peek_tag() == der.context_tag(1):
        raise MalformedEncoding("CRLs must not be present in a signed object",
                                offset=signed_data.position)

    signer_set = signed_data.read(der.SET, "signerInfos").children()
    signed_data.expect_end("SignedData")
    if signer_set.at_end():
        raise MalformedEncoding("Signed object has no signer", offset=signer_set.position)
    signer_element = signer_set.read(der.SEQUENCE, "SignerInfo")
    if not signer_set.at_end():
        raise MalformedEncoding("Exactly one signer is allowed", offset=signer_set.position)

    signer = signer_element.children()
    signer_version = signer.read(der.INTEGER, "SignerInfo version")
    if signer_version.as_integer() != SIGNER_INFO_VERSION:
        raise MalformedEncoding(f"Unsupported SignerInfo version {signer_version.as_integer()}",
                                offset=signer_version.offset)
    sid = signer.read(der.context_tag(0, constructed=False), "subjectKeyIdentifier").as_octets()
    signer_digest = _read_algorithm(signer.read(der.SEQUENCE, "digestAlgorithm"),
                                    DIGEST_ALGORITHMS, "Digest algorithm")
    if signer_digest != digest_algorithm:
        raise MalformedEncoding("Signer digest algorithm differs from SignedData digest algorithm",
                                offset=signer.position)

    signed_attributes = None
    message_digest = None
    signing_time = None
    attributes_element = signer.read_optional(der.context_tag(0))
    if attributes_element is not None:
        message_digest, signing_time = _read_signed_attributes(attributes_element, content_type)
        # The signature covers the attributes re-tagged as a universal SET
        signed_attributes = bytes([der.SET]) + bytes(attributes_element.encoded[1:])

    signature_algorithm = _read_algorithm(signer.read(der.SEQUENCE, "signatureAlgorithm"),
                                          SIGNATURE_ALGORITHMS, "Signature algorithm")
    signature = signer.read(der.OCTET_STRING, "signature").as_octets()
    if signer.peek_tag() == der.context_tag(1):
        raise MalformedEncoding("Unsigned attributes must not be present", offset=signer.position)
    signer.expect_end("SignerInfo")

    return SignedObject(
        content_type=content_type,
        content=content,
        certificate=certificate,
        certificate_der=certificate_der,
        signer_key_identifier=sid,
        digest_algorithm=digest_algorithm,
        signature_algorithm=signature_algorithm,
        signed_attributes=signed_attributes,
        message_digest=message_digest,
        signature=signature,
        signing_time=signing_time,
    )


def _certificate_key_identifier(certificate: x509.Certificate) -> Optional[bytes]:
    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
    except x509.ExtensionNotFound:
        return None
    return extension.value.digest


def verify_signed_object(signed_object: SignedObject) -> None:
    """
    Check digest and signature of a decoded signed object.

    Proves the content was signed by the key of the embedded certificate,
    nothing about who certified that key.
    """
    content_digest = hashlib.new(DIGEST_ALGORITHMS[signed_object.digest_algorithm],
                                 signed_object.content).digest()

    if signed_object.signed_attributes is not None:
        if signed_object.message_digest != content_digest:
            raise DigestMismatch("Message digest attribute does not match encapsulated content")
        signed_bytes = signed_object.signed_attributes
    else:
        signed_bytes = signed_object.content

    certificate_ski = _certificate_key_identifier(signed_object.certificate)
    if certificate_ski is not None and certificate_ski != signed_object.signer_key_identifier:
        raise SignatureInvalid("Signer identifier does not match the embedded certificate")

    public_key = signed_object.certificate.public_key()
    scheme = SIGNATURE_ALGORITHMS[signed_object.signature_algorithm]
    try:
        if scheme == "rsa":
            if not isinstance(public_key, rsa.RSAPublicKey):
                raise UnsupportedAlgorithm("RSA signature with a non-RSA certificate key")
            public_key.verify(signed_object.signature, signed_bytes,
                              padding.PKCS1v15(), hashes.SHA256())
        else:
            if not isinstance(public_key, ec.EllipticCurvePublicKey):
                raise UnsupportedAlgorithm("ECDSA signature with a non-EC certificate key")
            public_key.verify(signed_object.signature, signed_bytes, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        raise SignatureInvalid("Signature does not verify with the embedded certificate key")


def check_certificate_validity(certificate: x509.Certificate,
                               now: Optional[datetime] = None) -> None:
    """Check the certificate validity period; revocation is not consulted"""
    now = now or datetime.now(timezone.utc)
    not_before = certificate.not_valid_before_utc
    not_after = certificate.not_valid_after_utc
    if now < not_before:
        raise CertificateNotYetValid(f"Certificate not valid before {not_before.isoformat()}")
    if now > not_after:
        raise CertificateExpired(f"Certificate expired at {not_after.isoformat()}")


def decode_signed_object(data: Union[bytes, memoryview],
                         now: Optional[datetime] = None) -> SignedObject:
    """Unwrap, verify and time-check a signed object in one call"""
    signed_object = unwrap_signed_object(data)
    verify_signed_object(signed_object)
    check_certificate_validity(signed_object.certificate, now)
    return signed_object
