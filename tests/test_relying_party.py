"""
Tests for the relying-party client and VRP export parsing
"""

import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

import requests

from rpki_rov.relying_party.client import LocalVRPSource, RelyingPartyClient, parse_vrp_export
from rpki_rov.utils.error_handling import RelyingPartyUnavailable
from rpki_rov.utils.timeout_config import ExponentialBackoff

from tests.roa_builder import vrp_export


def no_sleep_backoff(**kwargs):
    return ExponentialBackoff(sleep=lambda seconds: None, **kwargs)


class ChunkOnlyReader:
    """Binary handle that records read sizes and refuses whole-document reads"""

    def __init__(self, data):
        self._buffer = io.BytesIO(data)
        self.sizes = []

    def read(self, size=-1):
        if size is None or size < 0:
            raise AssertionError("whole-document read")
        self.sizes.append(size)
        return self._buffer.read(size)


def response(status_code=200, body=b''):
    mock = Mock()
    mock.status_code = status_code
    mock.content = body
    mock.json.side_effect = lambda: json.loads(body)
    if status_code >= 400:
        mock.raise_for_status.side_effect = requests.HTTPError(
            f"{status_code} Error", response=mock
        )
    else:
        mock.raise_for_status.return_value = None
    return mock


class TestParseVRPExport(unittest.TestCase):
    """Export formats and per-entry rejection"""

    def test_rpki_client_format(self):
        body = vrp_export([
            {"asn": 64512, "prefix": "192.0.2.0/24", "maxLength": 24, "ta": "ripe"},
            {"asn": "AS64513", "prefix": "2001:db8::/32", "maxLength": 48, "ta": "arin"},
        ])
        vrps, metadata = parse_vrp_export(body, "test")

        self.assertEqual([(v.asn, str(v.prefix), v.max_length) for v in vrps],
                         [(64512, "192.0.2.0/24", 24), (64513, "2001:db8::/32", 48)])
        self.assertEqual(vrps[0].ta, "ripe")
        self.assertEqual(metadata.source_format, "rpki-client")
        self.assertEqual(metadata.vrp_count, 2)
        self.assertEqual(metadata.rejected, 0)
        self.assertEqual(metadata.generated.year, 2023)

    def test_legacy_format(self):
        body = json.dumps({"validated-roa-payloads": [
            {"asn": "AS64512", "prefix": "192.0.2.0/24", "max-length": 26, "ta": "apnic"},
        ]}).encode()
        vrps, metadata = parse_vrp_export(body, "test")

        self.assertEqual(vrps[0].max_length, 26)
        self.assertEqual(metadata.source_format, "routinator-legacy")
        self.assertIsNone(metadata.generated)

    def test_bad_entries_rejected_individually(self):
        body = vrp_export([
            {"asn": 64512, "prefix": "192.0.2.0/24", "maxLength": 24},
            {"asn": 64512, "prefix": "192.0.2.1/24", "maxLength": 24},
            {"asn": 64512, "prefix": "198.51.100.0/24", "maxLength": 16},
            {"asn": 64512, "prefix": "198.51.100.0/24", "maxLength": 33},
            {"asn": "ASX", "prefix": "203.0.113.0/24", "maxLength": 24},
            {"asn": 4294967296, "prefix": "203.0.113.0/24", "maxLength": 24},
            {"prefix": "203.0.113.0/24"},
        ])
        vrps, metadata = parse_vrp_export(body, "test")

        self.assertEqual(len(vrps), 1)
        self.assertEqual(metadata.rejected, 6)

    def test_missing_max_length_defaults(self):
        body = vrp_export([{"asn": 64512, "prefix": "192.0.2.0/24"}])
        vrps, _ = parse_vrp_export(body, "test")
        self.assertEqual(vrps[0].max_length, 24)

    def test_empty_list_is_valid(self):
        vrps, metadata = parse_vrp_export(vrp_export([]), "test")
        self.assertEqual(vrps, [])
        self.assertEqual(metadata.vrp_count, 0)

    def test_not_json(self):
        with self.assertRaises(ValueError):
            parse_vrp_export(b'<html>nope</html>', "test")

    def test_no_vrp_list(self):
        with self.assertRaises(ValueError):
            parse_vrp_export(b'{"status": "starting"}', "test")

    def test_file_object_input(self):
        with tempfile.TemporaryFile() as handle:
            handle.write(vrp_export([{"asn": 64512, "prefix": "192.0.2.0/24", "maxLength": 24}]))
            handle.seek(0)
            vrps, _ = parse_vrp_export(handle, "file")
        self.assertEqual(len(vrps), 1)

    def test_handle_read_in_chunks(self):
        entries = [{"asn": 64512, "prefix": f"10.{i // 256}.{i % 256}.0/24", "maxLength": 24}
                   for i in range(3000)]
        body = vrp_export(entries)
        handle = ChunkOnlyReader(body)

        vrps, metadata = parse_vrp_export(handle, "file")

        self.assertEqual(len(vrps), 3000)
        self.assertEqual(metadata.generated.year, 2023)
        self.assertTrue(all(0 <= size < len(body) for size in handle.sizes))

    def test_metadata_after_list(self):
        body = b'{"roas": [{"asn": 64512, "prefix": "192.0.2.0/24", "maxLength": 24}], ' \
               b'"metadata": {"generated": 1700000000}}'
        vrps, metadata = parse_vrp_export(body, "test")
        self.assertEqual(len(vrps), 1)
        self.assertEqual(metadata.generated.year, 2023)

    def test_null_and_scalar_entries_rejected(self):
        body = b'{"roas": [null, 5, "x", {"asn": 64512, "prefix": "192.0.2.0/24"}]}'
        vrps, metadata = parse_vrp_export(body, "test")
        self.assertEqual(len(vrps), 1)
        self.assertEqual(metadata.rejected, 3)

    def test_vrp_list_must_be_array(self):
        with self.assertRaises(ValueError):
            parse_vrp_export(b'{"roas": 5}', "test")

    def test_fractional_numbers_rejected(self):
        body = vrp_export([
            {"asn": 64512, "prefix": "192.0.2.0/24", "maxLength": 24},
            {"asn": 64512, "prefix": "10.0.0.0/8", "maxLength": 8.9},
            {"asn": 1.5, "prefix": "198.51.100.0/24", "maxLength": 24},
            {"asn": True, "prefix": "203.0.113.0/24", "maxLength": 24},
            {"asn": 64512, "prefix": "203.0.113.0/24", "maxLength": "24.0"},
        ])
        vrps, metadata = parse_vrp_export(body, "test")

        self.assertEqual([str(v.prefix) for v in vrps], ["192.0.2.0/24"])
        self.assertEqual(metadata.rejected, 4)

    def test_integral_decimal_accepted(self):
        body = b'{"roas": [{"asn": 64512.0, "prefix": "10.0.0.0/8", "maxLength": 16.0}]}'
        vrps, _ = parse_vrp_export(body, "test")
        self.assertEqual((vrps[0].asn, vrps[0].max_length), (64512, 16))


class TestRelyingPartyClient(unittest.TestCase):
    """HTTP behaviour with a mocked session"""

    def setUp(self):
        self.session = Mock()
        self.session.headers = {}
        self.client = RelyingPartyClient(
            "http://rp.example:8323/",
            timeout=5,
            retry_attempts=2,
            session=self.session,
            backoff_factory=no_sleep_backoff,
        )

    def test_fetch_status(self):
        self.session.get.return_value = response(body=json.dumps({
            "version": "0.13.2",
            "serial": 42,
            "now": "2025-03-14T12:00:00Z",
            "lastUpdateStart": "2025-03-14T11:50:00Z",
            "lastUpdateDone": "2025-03-14T11:52:00Z",
            "lastUpdateDuration": 120,
        }).encode())

        status = self.client.fetch_status()

        self.assertEqual(status.version, "0.13.2")
        self.assertEqual(status.serial, 42)
        self.assertEqual(status.last_update_duration, 120.0)
        url = self.session.get.call_args[0][0]
        self.assertEqual(url, "http://rp.example:8323/api/v1/status")
        self.assertEqual(self.session.get.call_args[1]["timeout"], 5)
        self.assertIn("User-Agent", self.session.headers)

    def test_status_error_body(self):
        self.session.get.return_value = response(body=b'{"error": "initial validation running"}')
        with self.assertRaises(RelyingPartyUnavailable) as ctx:
            self.client.fetch_status()
        self.assertIn("initial validation running", ctx.exception.message)

    def test_status_malformed_document(self):
        self.session.get.return_value = response(body=b'{"version": "1"}')
        with self.assertRaises(RelyingPartyUnavailable):
            self.client.fetch_status()

    def test_status_not_json(self):
        self.session.get.return_value = response(body=b'not json')
        with self.assertRaises(RelyingPartyUnavailable):
            self.client.fetch_status()

    def test_fetch_vrp_snapshot(self):
        self.session.get.return_value = response(body=vrp_export([
            {"asn": 64512, "prefix": "192.0.2.0/24", "maxLength": 24},
        ]))
        vrps, metadata = self.client.fetch_vrp_snapshot()

        self.assertEqual(len(vrps), 1)
        self.assertEqual(metadata.source, "http://rp.example:8323/json")

    def test_undecodable_snapshot(self):
        self.session.get.return_value = response(body=b'{"roas": [')
        with self.assertRaises(RelyingPartyUnavailable):
            self.client.fetch_vrp_snapshot()

    def test_client_error_not_retried(self):
        self.session.get.return_value = response(status_code=404)
        with self.assertRaises(RelyingPartyUnavailable) as ctx:
            self.client.fetch_status()

        self.assertEqual(self.session.get.call_count, 1)
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.to_dict()["statusCode"], 404)

    def test_server_error_retried_then_succeeds(self):
        self.session.get.side_effect = [
            response(status_code=503),
            response(body=b'{"version": "1", "serial": 1}'),
        ]
        status = self.client.fetch_status()

        self.assertEqual(status.serial, 1)
        self.assertEqual(self.session.get.call_count, 2)

    def test_connection_error_exhausts_retries(self):
        self.session.get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(RelyingPartyUnavailable) as ctx:
            self.client.fetch_vrp_snapshot()

        self.assertEqual(self.session.get.call_count, 3)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.endpoint, "http://rp.example:8323")


class TestLocalVRPSource(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.path = Path(self.temp_dir.name) / "vrps.json"

    def test_reads_export(self):
        self.path.write_bytes(vrp_export([{"asn": 64512, "prefix": "192.0.2.0/24", "maxLength": 24}]))
        vrps, metadata = LocalVRPSource(self.path).fetch_vrp_snapshot()

        self.assertEqual(len(vrps), 1)
        self.assertEqual(metadata.source, str(self.path))

    def test_missing_file_is_unavailable(self):
        with self.assertRaises(RelyingPartyUnavailable):
            LocalVRPSource(self.path).fetch_vrp_snapshot()

    def test_garbage_file_is_unavailable(self):
        self.path.write_bytes(b'garbage')
        with self.assertRaises(RelyingPartyUnavailable):
            LocalVRPSource(self.path).fetch_vrp_snapshot()

    def test_no_status(self):
        with self.assertRaises(RelyingPartyUnavailable):
            LocalVRPSource(self.path).fetch_status()


if __name__ == '__main__':
    unittest.main()
