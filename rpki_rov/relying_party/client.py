#!/usr/bin/env python3
"""
Relying Party Client

Fetches relying-party state over HTTP:
- Status document (`/api/v1/status`)
- Full VRP export (`/json`) in rpki-client/Routinator format

The VRP export is parsed incrementally with ijson so a snapshot of
hundreds of thousands of VRPs is never held as one JSON object tree.
Entries that break the VRP invariants are rejected one by one and
counted; they are never clamped into range.

Every failure (connection, timeout, HTTP status, undecodable body) is
reported as RelyingPartyUnavailable after bounded retries.
"""

import io
import logging
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

import ijson
import requests

from rpki_rov.models import VRP, IPPrefix, RelyingPartyStatus, SnapshotMetadata
from rpki_rov.utils.error_handling import RelyingPartyUnavailable
from rpki_rov.utils.timeout_config import (
    ExponentialBackoff, TimeoutType, get_timeout, timeout_context,
)


logger = logging.getLogger(__name__)

USER_AGENT = "rpki-rov/0.1.0"


def _parse_integer(value: Any, what: str) -> int:
    """Integral JSON number or digit string; fractions and booleans are errors"""
    if isinstance(value, bool):
        raise ValueError(f"Invalid {what}: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value():
            raise ValueError(f"Non-integral {what}: {value}")
        return int(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Non-integral {what}: {value}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            raise ValueError(f"Invalid {what}: {value!r}")
        return int(text)
    raise TypeError(f"Invalid {what} type: {type(value).__name__}")


def _parse_asn(value: Any) -> int:
    """Accept 64512 or "AS64512" as relying parties emit both"""
    if isinstance(value, str):
        text = value.strip()
        if text[:2].upper() == 'AS':
            text = text[2:]
        return _parse_integer(text, "AS number")
    return _parse_integer(value, "AS number")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Metadata timestamps come as epoch seconds or ISO 8601 text"""
    if value is None:
        return None
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        text = str(value).strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.debug(f"Unparseable metadata timestamp: {value!r}")
        return None


# Top-level array holding the VRPs, by export format
VRP_LISTS = {
    'roas': "rpki-client",
    'validated-roa-payloads': "routinator-legacy",
}

# Yielded by _stream_export when a VRP array opens
LIST_START = object()


def _entry_to_vrp(entry: Dict[str, Any]) -> VRP:
    prefix = IPPrefix.parse(entry['prefix'])
    max_length = entry.get('maxLength', entry.get('max-length'))
    if max_length is None:
        max_length = prefix.length
    return VRP(
        asn=_parse_asn(entry['asn']),
        prefix=prefix,
        max_length=_parse_integer(max_length, "maxLength"),
        ta=entry.get('ta'),
    )


def _generated_time(metadata: Dict[str, Any]) -> Optional[datetime]:
    for key in ('generatedTime', 'generated', 'buildtime', 'buildTime'):
        if key in metadata:
            parsed = _parse_timestamp(metadata[key])
            if parsed:
                return parsed
    return None


def _stream_export(handle: BinaryIO) -> Iterator[Tuple[str, Any]]:
    """
    Single ijson pass over an export.

    Yields ('metadata', object) for the metadata block, (list key,
    LIST_START) when a VRP array opens, and (list key, entry) for each
    element of that array.
    Only one entry is materialized at a time.
    """
    item_roots = {f"{key}.item": key for key in VRP_LISTS}
    builder = None
    root = label = None

    for prefix, event, value in ijson.parse(handle):
        if builder is None:
            if event == 'start_array' and prefix in VRP_LISTS:
                yield prefix, LIST_START
                continue
            if prefix == 'metadata' and event != 'map_key':
                label = 'metadata'
            elif prefix in item_roots and event != 'map_key':
                label = item_roots[prefix]
            else:
                continue
            builder = ijson.ObjectBuilder()
            root = prefix

        builder.event(event, value)
        # Containers finish on their own end event; scalars finish at once
        if prefix == root and event not in ('start_map', 'start_array', 'map_key'):
            yield label, builder.value
            builder = None


def parse_vrp_export(body: Union[bytes, BinaryIO], source: str) -> Tuple[List[VRP], SnapshotMetadata]:
    """
    Decode a VRP export document from bytes or a binary file handle.

    Raises ValueError when the document itself is not a VRP export;
    individual bad entries are skipped and counted.
    """
    handle = io.BytesIO(body) if isinstance(body, (bytes, bytearray)) else body

    metadata: Dict[str, Any] = {}
    source_format = None
    vrps: List[VRP] = []
    rejected = 0
    try:
        for label, value in _stream_export(handle):
            if label == 'metadata':
                if isinstance(value, dict):
                    metadata = value
            elif value is LIST_START:
                source_format = source_format or VRP_LISTS[label]
            else:
                try:
                    vrps.append(_entry_to_vrp(value))
                except (KeyError, TypeError, ValueError) as e:
                    rejected += 1
                    logger.debug(f"Rejected VRP entry {value!r}: {e}")
    except ijson.JSONError as e:
        raise ValueError(f"VRP export is not valid JSON: {e}")

    if source_format is None:
        raise ValueError("Document has no VRP list")

    if rejected:
        logger.warning(f"Rejected {rejected} malformed VRP entries from {source}")

    snapshot_metadata = SnapshotMetadata(
        source=source,
        fetched_at=datetime.now(timezone.utc),
        vrp_count=len(vrps),
        rejected=rejected,
        generated=_generated_time(metadata),
        source_format=source_format,
    )
    return vrps, snapshot_metadata


class RelyingPartyClient:
    """HTTP client for a relying party's status and VRP export endpoints"""

    def __init__(self, endpoint: str,
                 vrp_path: str = "/json",
                 status_path: str = "/api/v1/status",
                 timeout: Optional[float] = None,
                 retry_attempts: int = 2,
                 verify_tls: bool = True,
                 session: Optional[requests.Session] = None,
                 backoff_factory=ExponentialBackoff):
        self.endpoint = endpoint.rstrip('/')
        self.vrp_path = vrp_path
        self.status_path = status_path
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.verify_tls = verify_tls
        self.session = session or requests.Session()
        self.session.headers.setdefault('User-Agent', USER_AGENT)
        self._backoff_factory = backoff_factory

    def _url(self, path: str) -> str:
        return f"{self.endpoint}/{path.lstrip('/')}"

    def _get(self, path: str, timeout_type: TimeoutType,
             timeout: Optional[float]) -> requests.Response:
        url = self._url(path)
        timeout = get_timeout(timeout_type, timeout or self.timeout)
        backoff = self._backoff_factory(initial_delay=0.5, max_delay=10.0,
                                        max_retries=self.retry_attempts)

        with timeout_context(timeout_type, f"GET {url}", custom_timeout=timeout) as context:
            while True:
                try:
                    response = self.session.get(url, timeout=timeout, verify=self.verify_tls)
                    response.raise_for_status()
                    return response
                except requests.RequestException as e:
                    status_code = getattr(getattr(e, 'response', None), 'status_code', None)
                    # Client errors will not improve with a retry
                    retry = status_code is None or status_code >= 500
                    if retry and backoff.delay(context):
                        logger.warning(f"Relying party request to {url} failed ({e}); retrying")
                        continue
                    logger.error(f"Relying party request to {url} failed: {e}")
                    raise RelyingPartyUnavailable(
                        f"Request to {url} failed: {e}",
                        endpoint=self.endpoint,
                        status_code=status_code,
                    )

    def fetch_status(self, timeout: Optional[float] = None) -> RelyingPartyStatus:
        """Relying-party version, serial and last update times"""
        response = self._get(self.status_path, TimeoutType.RELYING_PARTY_STATUS, timeout)
        try:
            document = response.json()
        except ValueError as e:
            raise RelyingPartyUnavailable(f"Status response is not JSON: {e}",
                                          endpoint=self.endpoint)

        if not isinstance(document, dict):
            raise RelyingPartyUnavailable("Status response is not a JSON object",
                                          endpoint=self.endpoint)
        if 'error' in document:
            raise RelyingPartyUnavailable(f"Relying party reported: {document['error']}",
                                          endpoint=self.endpoint)
        try:
            duration = document.get('lastUpdateDuration')
            return RelyingPartyStatus(
                version=str(document['version']),
                serial=int(document['serial']),
                now=document.get('now'),
                last_update_start=document.get('lastUpdateStart'),
                last_update_done=document.get('lastUpdateDone'),
                last_update_duration=float(duration) if duration is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RelyingPartyUnavailable(f"Malformed status document: {e}",
                                          endpoint=self.endpoint)

    def fetch_vrp_snapshot(self, timeout: Optional[float] = None) -> Tuple[List[VRP], SnapshotMetadata]:
        """Download and fully decode the VRP export"""
        response = self._get(self.vrp_path, TimeoutType.RELYING_PARTY_SNAPSHOT, timeout)
        try:
            return parse_vrp_export(response.content, self._url(self.vrp_path))
        except ValueError as e:
            raise RelyingPartyUnavailable(f"Undecodable VRP export: {e}",
                                          endpoint=self.endpoint)


class LocalVRPSource:
    """VRP snapshot source backed by an export file on disk"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def fetch_vrp_snapshot(self, timeout: Optional[float] = None) -> Tuple[List[VRP], SnapshotMetadata]:
        if not self.path.is_file():
            raise RelyingPartyUnavailable(f"VRP export file not found: {self.path}",
                                          endpoint=str(self.path))
        try:
            with timeout_context(TimeoutType.FILE_OPERATION, f"read {self.path}",
                                 custom_timeout=timeout):
                with open(self.path, 'rb') as f:
                    return parse_vrp_export(f, str(self.path))
        except OSError as e:
            raise RelyingPartyUnavailable(f"Cannot read VRP export {self.path}: {e}",
                                          endpoint=str(self.path))
        except ValueError as e:
            raise RelyingPartyUnavailable(f"Undecodable VRP export {self.path}: {e}",
                                          endpoint=str(self.path))

    def fetch_status(self, timeout: Optional[float] = None) -> RelyingPartyStatus:
        raise RelyingPartyUnavailable("No relying party configured; only a local VRP file",
                                      endpoint=str(self.path))
