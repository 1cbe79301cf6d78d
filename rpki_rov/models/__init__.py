"""
RPKI ROV Data Models

Core value types shared by the ROA decoder, the VRP repository and the
route origin validation engine. All types are immutable once built.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from ipaddress import ip_network, IPv4Address, IPv6Address
from typing import Any, Dict, Iterable, Optional, Tuple


class AddressFamily(Enum):
    """IP address family with its RFC 3779 AFI and bit width"""
    IPV4 = 4
    IPV6 = 6

    @property
    def width(self) -> int:
        return 32 if self is AddressFamily.IPV4 else 128

    @property
    def afi(self) -> int:
        return 1 if self is AddressFamily.IPV4 else 2

    @property
    def label(self) -> str:
        return "ipv4" if self is AddressFamily.IPV4 else "ipv6"

    @classmethod
    def from_afi(cls, afi: int) -> 'AddressFamily':
        if afi == 1:
            return cls.IPV4
        if afi == 2:
            return cls.IPV6
        raise ValueError(f"Unknown address family identifier {afi}")


@dataclass(frozen=True)
class IPPrefix:
    """
    Canonical IP prefix.

    `network` is the address as an unsigned integer of the family's width;
    every bit past `length` must be zero.
    """
    family: AddressFamily
    network: int
    length: int

    def __post_init__(self):
        width = self.family.width
        if not 0 <= self.length <= width:
            raise ValueError(f"Prefix length {self.length} out of range for {self.family.label}")
        if not 0 <= self.network < (1 << width):
            raise ValueError(f"Network address out of range for {self.family.label}")
        host_mask = (1 << (width - self.length)) - 1
        if self.network & host_mask:
            raise ValueError(f"Host bits set in {self._address_text()}/{self.length}")

    @classmethod
    def parse(cls, text: str) -> 'IPPrefix':
        """Parse CIDR text; host bits set is an error, not normalized away"""
        network = ip_network(str(text).strip(), strict=True)
        family = AddressFamily.IPV4 if network.version == 4 else AddressFamily.IPV6
        return cls(family, int(network.network_address), network.prefixlen)

    @property
    def max_length(self) -> int:
        return self.family.width

    def covers(self, other: 'IPPrefix') -> bool:
        """True if `other` lies inside this prefix's address range"""
        if self.family is not other.family or self.length > other.length:
            return False
        shift = self.family.width - self.length
        return (other.network >> shift) == (self.network >> shift)

    def sort_key(self) -> Tuple[int, int, int]:
        return (self.family.value, self.network, self.length)

    def _address_text(self) -> str:
        if self.family is AddressFamily.IPV4:
            return str(IPv4Address(self.network))
        return str(IPv6Address(self.network))

    def __str__(self) -> str:
        return f"{self._address_text()}/{self.length}"


@dataclass(frozen=True)
class VRP:
    """
    Validated ROA Payload.

    Identity is the (asn, prefix, max_length) triple; the trust anchor
    name is carried for display only.
    """
    asn: int
    prefix: IPPrefix
    max_length: int
    ta: Optional[str] = field(default=None, compare=False, hash=False)

    def __post_init__(self):
        if not 0 <= self.asn <= 4294967295:
            raise ValueError(f"Invalid AS number: {self.asn}")
        if not self.prefix.length <= self.max_length <= self.prefix.max_length:
            raise ValueError(f"Invalid max_length {self.max_length} for prefix {self.prefix}")

    def sort_key(self) -> Tuple[int, int, int, int, int]:
        family, network, length = self.prefix.sort_key()
        return (self.asn, family, network, length, self.max_length)

    def to_dict(self) -> Dict[str, Any]:
        data = {'asn': self.asn, 'prefix': str(self.prefix), 'maxLength': self.max_length}
        if self.ta is not None:
            data['ta'] = self.ta
        return data


def sorted_vrps(vrps: Iterable[VRP]) -> Tuple[VRP, ...]:
    """Deterministic evidence ordering"""
    return tuple(sorted(set(vrps), key=VRP.sort_key))


@dataclass(frozen=True)
class RouteAnnouncement:
    """Route to validate: origin AS plus announced prefix"""
    asn: int
    prefix: IPPrefix

    def __post_init__(self):
        if not 0 <= self.asn <= 4294967295:
            raise ValueError(f"Invalid AS number: {self.asn}")


class RPKIState(Enum):
    """RPKI validation states following RFC 6811"""
    VALID = "valid"
    INVALID = "invalid"
    NOTFOUND = "not-found"


class InvalidReason(Enum):
    """Why a covered route failed validation"""
    ORIGIN_MISMATCH = "OriginMismatch"
    MAX_LENGTH_EXCEEDED = "MaxLengthExceeded"
    BOTH = "Both"


class ValidationOutcome:
    """
    Closed set of validation results: Valid, Invalid or NotFound.

    Callers dispatch on the concrete class (or on `state`); `vrps` is the
    complete evidence set in deterministic order.
    """
    __slots__ = ()

    state: RPKIState

    @property
    def vrps(self) -> Tuple[VRP, ...]:
        raise NotImplementedError

    @property
    def reason(self) -> Optional[InvalidReason]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'reason': self.reason.value if self.reason else None,
            'vrps': [vrp.to_dict() for vrp in self.vrps],
        }


@dataclass(frozen=True)
class Valid(ValidationOutcome):
    matching_vrps: Tuple[VRP, ...]

    state = RPKIState.VALID

    @property
    def vrps(self) -> Tuple[VRP, ...]:
        return self.matching_vrps


@dataclass(frozen=True)
class Invalid(ValidationOutcome):
    covering_vrps: Tuple[VRP, ...]
    invalid_reason: InvalidReason

    state = RPKIState.INVALID

    @property
    def vrps(self) -> Tuple[VRP, ...]:
        return self.covering_vrps

    @property
    def reason(self) -> Optional[InvalidReason]:
        return self.invalid_reason


@dataclass(frozen=True)
class NotFound(ValidationOutcome):
    state = RPKIState.NOTFOUND

    @property
    def vrps(self) -> Tuple[VRP, ...]:
        return ()


@dataclass(frozen=True)
class SnapshotMetadata:
    """Freshness information for a VRP snapshot"""
    source: str
    fetched_at: datetime
    vrp_count: int = 0
    rejected: int = 0
    generated: Optional[datetime] = None
    source_format: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'sourceFormat': self.source_format,
            'fetchedAt': self.fetched_at.isoformat(),
            'generated': self.generated.isoformat() if self.generated else None,
            'vrpCount': self.vrp_count,
            'rejected': self.rejected,
        }


@dataclass(frozen=True)
class RelyingPartyStatus:
    """Status document published by the relying party"""
    version: str
    serial: int
    now: Optional[str] = None
    last_update_start: Optional[str] = None
    last_update_done: Optional[str] = None
    last_update_duration: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'serial': self.serial,
            'now': self.now,
            'lastUpdateStart': self.last_update_start,
            'lastUpdateDone': self.last_update_done,
            'lastUpdateDuration': self.last_update_duration,
        }
