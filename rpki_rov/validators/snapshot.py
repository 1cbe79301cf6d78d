#!/usr/bin/env python3
"""
VRP Snapshot Store

Holds the currently published VRPRepository behind a single reference.

- Readers take the reference without locking and keep using the
  repository they got, even while a refresh publishes a newer one
- A refresh fetches and fully builds the new repository first, then
  swaps the reference in one assignment
- A failed refresh leaves the published repository untouched
- Only one refresh runs at a time; concurrent callers reuse its result
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Protocol, Tuple

from rpki_rov.models import VRP, SnapshotMetadata
from rpki_rov.utils.error_handling import RelyingPartyUnavailable
from rpki_rov.utils.logging import LoggingTimer
from rpki_rov.validators.repository import VRPRepository


class VRPSource(Protocol):
    """Anything that can produce a complete VRP snapshot"""

    def fetch_vrp_snapshot(self, timeout: Optional[float] = None) -> Tuple[List[VRP], SnapshotMetadata]:
        ...


class VRPSnapshotStore:
    """Atomically swapped VRP repository with age-based refresh"""

    def __init__(self, source: VRPSource,
                 max_age_seconds: float = 600,
                 fail_closed: bool = True,
                 clock: Callable[[], float] = time.monotonic,
                 logger: Optional[logging.Logger] = None):
        self.source = source
        self.max_age_seconds = max_age_seconds
        self.fail_closed = fail_closed
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

        # (repository, published_at) replaced as one tuple
        self._published: Optional[Tuple[VRPRepository, float]] = None
        self._refresh_lock = threading.Lock()

    def current(self) -> Optional[VRPRepository]:
        """Published repository, or None before the first refresh"""
        published = self._published
        return published[0] if published else None

    def age(self) -> Optional[float]:
        published = self._published
        if published is None:
            return None
        return self._clock() - published[1]

    def is_stale(self) -> bool:
        age = self.age()
        return age is None or age > self.max_age_seconds

    def publish(self, repository: VRPRepository) -> None:
        """Make `repository` the current snapshot"""
        self._published = (repository, self._clock())

    def refresh(self, timeout: Optional[float] = None) -> VRPRepository:
        """Fetch, build and publish a new snapshot"""
        with self._refresh_lock:
            return self._refresh_locked(timeout)

    def get(self, timeout: Optional[float] = None) -> VRPRepository:
        """
        A repository no older than `max_age_seconds`.

        Refreshes when needed. If the refresh fails and a stale snapshot
        exists, serves it when `fail_closed` is off and raises otherwise.
        """
        published = self._published
        if published is not None and not self.is_stale():
            return published[0]

        with self._refresh_lock:
            # Another caller may have refreshed while we waited
            if self._published is not None and not self.is_stale():
                return self._published[0]
            try:
                return self._refresh_locked(timeout)
            except RelyingPartyUnavailable:
                stale = self.current()
                if stale is None or self.fail_closed:
                    raise
                self.logger.warning(
                    f"VRP refresh failed; serving stale snapshot ({self.age():.0f}s old)"
                )
                return stale

    def _refresh_locked(self, timeout: Optional[float]) -> VRPRepository:
        with LoggingTimer(self.logger, "VRP snapshot refresh"):
            vrps, metadata = self.source.fetch_vrp_snapshot(timeout=timeout)
            repository = VRPRepository.build(vrps, metadata)
        self.publish(repository)
        self.logger.info(
            f"Published VRP snapshot from {metadata.source}: {len(repository)} VRPs"
            + (f", {metadata.rejected} rejected" if metadata.rejected else "")
        )
        return repository
