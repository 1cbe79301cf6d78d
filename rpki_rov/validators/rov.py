#!/usr/bin/env python3
"""
Route Origin Validation

RFC 6811 origin validation of a route announcement against a VRP
repository, returning the verdict together with the VRPs that produced
it. `validate_route` is a pure function: no I/O, no mutation, and it
never raises for a well-formed announcement.
"""

import logging
from typing import Iterable, Optional, Tuple, Union

from rpki_rov.models import (
    VRP, IPPrefix, Invalid, InvalidReason, NotFound, RouteAnnouncement,
    SnapshotMetadata, Valid, ValidationOutcome,
)
from rpki_rov.utils.error_handling import ParameterValidator
from rpki_rov.validators.repository import VRPRepository
from rpki_rov.validators.snapshot import VRPSnapshotStore


logger = logging.getLogger(__name__)

# RFC 6483: an AS0 VRP says the prefix must not be routed; it never matches
AS0 = 0


def classify_invalid(covering: Iterable[VRP], asn: int, length: int) -> InvalidReason:
    """
    Reason a covered route matched no VRP.

    Only meaningful when no covering VRP matches both origin and length.
    """
    origin_failures = 0
    length_failures = 0
    for vrp in covering:
        if vrp.asn != asn or vrp.asn == AS0:
            origin_failures += 1
        elif length > vrp.max_length:
            length_failures += 1

    if origin_failures and not length_failures:
        return InvalidReason.ORIGIN_MISMATCH
    if length_failures and not origin_failures:
        return InvalidReason.MAX_LENGTH_EXCEEDED
    return InvalidReason.BOTH


def validate_route(announcement: RouteAnnouncement,
                   repository: VRPRepository) -> ValidationOutcome:
    """Validate `announcement` against `repository`"""
    prefix = announcement.prefix
    covering = repository.covering_vrps(prefix)
    if not covering:
        return NotFound()

    matching = tuple(
        vrp for vrp in covering
        if vrp.asn != AS0 and vrp.asn == announcement.asn and prefix.length <= vrp.max_length
    )
    if matching:
        return Valid(matching_vrps=matching)

    return Invalid(
        covering_vrps=covering,
        invalid_reason=classify_invalid(covering, announcement.asn, prefix.length),
    )


class RPKIValidator:
    """
    Route origin validator over a relying-party VRP snapshot.

    Resolves the current snapshot through a `VRPSnapshotStore`, which
    raises RelyingPartyUnavailable when no usable snapshot exists. That
    failure is never reported as NotFound.
    """

    def __init__(self, snapshot_store: VRPSnapshotStore,
                 logger: Optional[logging.Logger] = None):
        self.snapshot_store = snapshot_store
        self.logger = logger or logging.getLogger(__name__)

    def validate_prefix_origin(self, prefix: Union[str, IPPrefix],
                               asn: Union[int, str]) -> Tuple[ValidationOutcome, VRPRepository]:
        """
        Validate a prefix-origin pair.

        Returns the outcome and the repository it was computed against, so
        callers can report snapshot freshness alongside the verdict.
        """
        if not isinstance(prefix, IPPrefix):
            prefix = ParameterValidator.validate_prefix(prefix)
        announcement = RouteAnnouncement(ParameterValidator.validate_as_number(asn), prefix)

        repository = self.snapshot_store.get()
        outcome = validate_route(announcement, repository)
        self.logger.debug(f"{prefix} AS{announcement.asn}: {outcome.state.value} "
                          f"({len(outcome.vrps)} VRPs)")
        return outcome, repository

    def vrps_for_asn(self, asn: Union[int, str]) -> Tuple[Tuple[VRP, ...], Optional[SnapshotMetadata]]:
        """VRPs authorizing `asn` plus the metadata of the snapshot they came from"""
        asn = ParameterValidator.validate_as_number(asn)
        repository = self.snapshot_store.get()
        return repository.vrps_for_asn(asn), repository.metadata
