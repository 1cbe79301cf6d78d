#!/usr/bin/env python3
"""
VRP Repository

Immutable, indexed collection of Validated ROA Payloads.

- Per address family, one hash table per populated prefix length,
  keyed by the prefix's leading bits; a covering-prefix query does one
  lookup per populated length no longer than the query
- Building is a single linear pass over the (deduplicated) VRPs
- Secondary index by origin AS for per-ASN projections
- Exact (asn, prefix, maxLength) duplicates collapse on build

A repository is never modified after `build()`; a refresh builds a new
one and publishes it whole (see snapshot.py).
"""

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from rpki_rov.models import VRP, AddressFamily, IPPrefix, SnapshotMetadata, sorted_vrps


logger = logging.getLogger(__name__)

# {prefix length: {network >> (width - length): VRPs}}
LengthBuckets = Dict[int, Dict[int, Tuple[VRP, ...]]]


def _bucket_key(prefix: IPPrefix, length: int) -> int:
    return prefix.network >> (prefix.family.width - length)


class VRPRepository:
    """Read-only VRP index answering covering-prefix and per-ASN queries"""

    def __init__(self, buckets: Dict[AddressFamily, LengthBuckets],
                 by_asn: Dict[int, Tuple[VRP, ...]],
                 count: int,
                 metadata: Optional[SnapshotMetadata] = None):
        # Use build(); the constructor trusts its arguments
        self._buckets = buckets
        self._lengths = {family: tuple(sorted(table)) for family, table in buckets.items()}
        self._by_asn = by_asn
        self._count = count
        self.metadata = metadata

    @classmethod
    def build(cls, vrps: Iterable[VRP],
              metadata: Optional[SnapshotMetadata] = None) -> 'VRPRepository':
        """Index `vrps`, collapsing exact duplicates"""
        unique: Set[VRP] = set(vrps)
        buckets: Dict[AddressFamily, Dict[int, Dict[int, List[VRP]]]] = {
            family: {} for family in AddressFamily
        }
        by_asn: Dict[int, List[VRP]] = {}

        for vrp in unique:
            prefix = vrp.prefix
            by_length = buckets[prefix.family].setdefault(prefix.length, {})
            by_length.setdefault(_bucket_key(prefix, prefix.length), []).append(vrp)
            by_asn.setdefault(vrp.asn, []).append(vrp)

        frozen_buckets = {
            family: {
                length: {key: tuple(entries) for key, entries in table.items()}
                for length, table in by_length.items()
            }
            for family, by_length in buckets.items()
        }
        frozen_by_asn = {asn: sorted_vrps(entries) for asn, entries in by_asn.items()}
        logger.debug(f"Built VRP repository: {len(unique)} unique VRPs, "
                     f"{len(frozen_by_asn)} origin ASes")
        return cls(frozen_buckets, frozen_by_asn, len(unique), metadata)

    def covering_vrps(self, query: IPPrefix) -> Tuple[VRP, ...]:
        """
        Every VRP whose prefix covers `query`, sorted deterministically.

        A VRP covers `query` when both share a family, the VRP prefix is
        no longer than `query`, and the leading VRP-length bits match.
        """
        found: List[VRP] = []
        table = self._buckets[query.family]
        for length in self._lengths[query.family]:
            if length > query.length:
                break
            found.extend(table[length].get(_bucket_key(query, length), ()))
        return tuple(sorted(found, key=VRP.sort_key))

    def vrps_for_asn(self, asn: int) -> Tuple[VRP, ...]:
        """VRPs whose origin AS is `asn`, sorted deterministically"""
        return self._by_asn.get(asn, ())

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[VRP]:
        """All VRPs in deterministic order"""
        everything = []
        for entries in self._by_asn.values():
            everything.extend(entries)
        return iter(sorted_vrps(everything))

    def __repr__(self) -> str:
        source = self.metadata.source if self.metadata else "unknown"
        return f"VRPRepository(vrps={self._count}, source={source!r})"
