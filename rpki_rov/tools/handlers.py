#!/usr/bin/env python3
"""
RPKI Tool Handlers

Transport-independent implementations of the tool operations:

- parse_roa_file: decode and verify a ROA file from disk
- validity: route origin validation against the relying party's VRPs
- roas: VRPs authorizing one origin AS
- status: relying-party version, serial and update times

Handlers return pydantic models and raise RPKIError subclasses; the
transport decides how to render either.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from cryptography import x509

from rpki_rov import __version__
from rpki_rov.decoders.roa import ROAObject, load_roa_file
from rpki_rov.models import VRP, IPPrefix, SnapshotMetadata
from rpki_rov.relying_party.client import LocalVRPSource, RelyingPartyClient
from rpki_rov.tools.schemas import (
    CertificateInfo, ParseROAResponse, ROAPrefixModel, ROAsResponse, RouteModel,
    ServerInfo, SnapshotInfo, StatusResponse, ToolDescription, ValidityResponse,
    VRPModel,
)
from rpki_rov.utils.config import RPKIToolConfig
from rpki_rov.utils.error_handling import ConfigurationError, ErrorSeverity, ParameterValidator
from rpki_rov.validators.rov import RPKIValidator
from rpki_rov.validators.snapshot import VRPSnapshotStore


TOOL_DESCRIPTIONS = [
    ToolDescription(name="parse_roa_file",
                    description="Decode and verify a ROA file, listing its AS and prefixes"),
    ToolDescription(name="validity",
                    description="Route origin validity of an (ASN, prefix) pair with the deciding VRPs"),
    ToolDescription(name="roas",
                    description="VRPs that authorize an origin AS"),
    ToolDescription(name="status",
                    description="Status of the RPKI relying party"),
]


def _vrp_model(vrp: VRP) -> VRPModel:
    return VRPModel(asn=vrp.asn, prefix=str(vrp.prefix), max_length=vrp.max_length, ta=vrp.ta)


def _snapshot_info(metadata: Optional[SnapshotMetadata]) -> Optional[SnapshotInfo]:
    if metadata is None:
        return None
    return SnapshotInfo(
        source=metadata.source,
        source_format=metadata.source_format,
        fetched_at=metadata.fetched_at,
        generated=metadata.generated,
        vrp_count=metadata.vrp_count,
        rejected=metadata.rejected,
    )


def _certificate_info(certificate: x509.Certificate) -> CertificateInfo:
    try:
        ski = certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        key_identifier = ski.value.digest.hex()
    except x509.ExtensionNotFound:
        key_identifier = None
    return CertificateInfo(
        subject=certificate.subject.rfc4514_string(),
        serial_number=format(certificate.serial_number, 'x'),
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
        subject_key_identifier=key_identifier,
    )


def roa_response(roa: ROAObject) -> ParseROAResponse:
    return ParseROAResponse(
        as_id=roa.as_id,
        address_family=[family.label for family in roa.address_families],
        vrps=[ROAPrefixModel(prefix=str(entry.prefix), max_length=entry.max_length)
              for entry in roa.entries],
        signing_certificate_present=True,
        signing_certificate=_certificate_info(roa.certificate),
        signing_time=roa.signing_time,
    )


class RPKITools:
    """Tool operations over one relying-party source"""

    def __init__(self, validator: Optional[RPKIValidator] = None,
                 relying_party: Optional[Union[RelyingPartyClient, LocalVRPSource]] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
                 logger: Optional[logging.Logger] = None):
        self.validator = validator
        self.relying_party = relying_party
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: RPKIToolConfig) -> 'RPKITools':
        """
        Wire source, snapshot store and validator from configuration.

        Without a relying party only parse_roa_file is usable.
        """
        rp_config = config.relying_party
        if rp_config.vrp_file:
            source = LocalVRPSource(rp_config.vrp_file)
        elif rp_config.endpoint:
            source = RelyingPartyClient(
                rp_config.endpoint,
                vrp_path=rp_config.vrp_path,
                status_path=rp_config.status_path,
                timeout=rp_config.timeout,
                retry_attempts=rp_config.retry_attempts,
                verify_tls=rp_config.verify_tls,
            )
        else:
            return cls()

        store = VRPSnapshotStore(
            source,
            max_age_seconds=config.validation.max_snapshot_age_seconds,
            fail_closed=config.validation.fail_closed,
        )
        return cls(RPKIValidator(store), source)

    def _require_source(self):
        if self.validator is None or self.relying_party is None:
            raise ConfigurationError(
                "No relying party configured",
                severity=ErrorSeverity.FATAL,
                guidance="Set --endpoint / RPKI_ROV_ENDPOINT or --vrp-file / RPKI_ROV_VRP_FILE",
            )

    def parse_roa_file(self, path: str) -> ParseROAResponse:
        roa = load_roa_file(path, now=self._clock())
        return roa_response(roa)

    def validity(self, asn: Union[int, str], prefix: Union[str, IPPrefix]) -> ValidityResponse:
        self._require_source()
        asn = ParameterValidator.validate_as_number(asn)
        if not isinstance(prefix, IPPrefix):
            prefix = ParameterValidator.validate_prefix(prefix)
        outcome, repository = self.validator.validate_prefix_origin(prefix, asn)
        return ValidityResponse(
            route=RouteModel(origin_asn=asn, prefix=str(prefix)),
            state=outcome.state.value,
            reason=outcome.reason.value if outcome.reason else None,
            vrps=[_vrp_model(vrp) for vrp in outcome.vrps],
            snapshot=_snapshot_info(repository.metadata),
        )

    def roas(self, asn: Union[int, str]) -> ROAsResponse:
        self._require_source()
        asn = ParameterValidator.validate_as_number(asn)
        vrps, metadata = self.validator.vrps_for_asn(asn)
        return ROAsResponse(
            asn=asn,
            snapshot=_snapshot_info(metadata),
            vrps=[_vrp_model(vrp) for vrp in vrps],
        )

    def status(self) -> StatusResponse:
        self._require_source()
        status = self.relying_party.fetch_status()
        return StatusResponse(
            version=status.version,
            serial=status.serial,
            now=status.now,
            last_update_start=status.last_update_start,
            last_update_done=status.last_update_done,
            last_update_duration=status.last_update_duration,
        )

    def server_info(self) -> ServerInfo:
        return ServerInfo(
            name="rpki-rov",
            title="Route origin validation tools for RPKI",
            version=__version__,
            instructions="Exposes ROA decoding and route origin validation backed by an RPKI relying party",
            tools=TOOL_DESCRIPTIONS,
        )
