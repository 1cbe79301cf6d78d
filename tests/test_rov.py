"""
Tests for route origin validation
"""

import unittest
from unittest.mock import Mock

from rpki_rov.models import (
    VRP, Invalid, InvalidReason, IPPrefix, NotFound, RouteAnnouncement, RPKIState, Valid,
)
from rpki_rov.utils.error_handling import RelyingPartyUnavailable, ValidationError
from rpki_rov.validators.repository import VRPRepository
from rpki_rov.validators.rov import RPKIValidator, classify_invalid, validate_route


def route(asn, prefix):
    return RouteAnnouncement(asn, IPPrefix.parse(prefix))


class TestValidateRoute(unittest.TestCase):
    """RFC 6811 outcomes"""

    def setUp(self):
        self.vrp = VRP(64512, IPPrefix.parse("10.0.0.0/8"), 16)
        self.repository = VRPRepository.build([self.vrp])

    def test_valid(self):
        outcome = validate_route(route(64512, "10.1.0.0/16"), self.repository)

        self.assertIsInstance(outcome, Valid)
        self.assertEqual(outcome.state, RPKIState.VALID)
        self.assertEqual(outcome.vrps, (self.vrp,))
        self.assertIsNone(outcome.reason)

    def test_invalid_max_length_exceeded(self):
        outcome = validate_route(route(64512, "10.1.1.0/24"), self.repository)

        self.assertIsInstance(outcome, Invalid)
        self.assertEqual(outcome.reason, InvalidReason.MAX_LENGTH_EXCEEDED)
        self.assertEqual(outcome.vrps, (self.vrp,))

    def test_invalid_origin_mismatch(self):
        outcome = validate_route(route(65000, "10.1.0.0/16"), self.repository)

        self.assertIsInstance(outcome, Invalid)
        self.assertEqual(outcome.reason, InvalidReason.ORIGIN_MISMATCH)

    def test_not_found(self):
        outcome = validate_route(route(64512, "192.0.2.0/24"), self.repository)

        self.assertIsInstance(outcome, NotFound)
        self.assertEqual(outcome.state, RPKIState.NOTFOUND)
        self.assertEqual(outcome.vrps, ())

    def test_invalid_both(self):
        repository = VRPRepository.build([
            self.vrp,
            VRP(65001, IPPrefix.parse("10.1.0.0/16"), 24),
        ])
        outcome = validate_route(route(65000, "10.1.1.0/24"), repository)
        self.assertEqual(outcome.reason, InvalidReason.ORIGIN_MISMATCH)

        outcome = validate_route(route(64512, "10.1.1.0/24"), repository)
        self.assertEqual(outcome.reason, InvalidReason.BOTH)
        self.assertEqual(len(outcome.vrps), 2)

    def test_valid_reports_only_matching_vrps(self):
        other = VRP(65001, IPPrefix.parse("10.1.0.0/16"), 16)
        repository = VRPRepository.build([self.vrp, other])

        outcome = validate_route(route(64512, "10.1.0.0/16"), repository)
        self.assertEqual(outcome.vrps, (self.vrp,))

    def test_as0_never_validates(self):
        repository = VRPRepository.build([VRP(0, IPPrefix.parse("10.0.0.0/8"), 32)])
        outcome = validate_route(route(0, "10.1.0.0/16"), repository)
        self.assertIsInstance(outcome, Invalid)

    def test_families_do_not_mix(self):
        outcome = validate_route(route(64512, "::/0"), self.repository)
        self.assertIsInstance(outcome, NotFound)

    def test_deterministic(self):
        vrps = [VRP(asn, IPPrefix.parse("10.0.0.0/8"), 8) for asn in (65003, 65001, 65002)]
        first = validate_route(route(64512, "10.0.0.0/8"), VRPRepository.build(vrps))
        second = validate_route(route(64512, "10.0.0.0/8"), VRPRepository.build(reversed(vrps)))

        self.assertEqual(first, second)
        self.assertEqual([v.asn for v in first.vrps], [65001, 65002, 65003])

    def test_to_dict(self):
        outcome = validate_route(route(64512, "10.1.1.0/24"), self.repository)
        self.assertEqual(outcome.to_dict(), {
            'state': 'invalid',
            'reason': 'MaxLengthExceeded',
            'vrps': [{'asn': 64512, 'prefix': '10.0.0.0/8', 'maxLength': 16}],
        })


class TestClassifyInvalid(unittest.TestCase):

    def test_reasons(self):
        wide = VRP(64512, IPPrefix.parse("10.0.0.0/8"), 8)
        self.assertEqual(classify_invalid([wide], 64512, 16), InvalidReason.MAX_LENGTH_EXCEEDED)
        self.assertEqual(classify_invalid([wide], 65000, 8), InvalidReason.ORIGIN_MISMATCH)
        self.assertEqual(classify_invalid([wide], 65000, 16), InvalidReason.ORIGIN_MISMATCH)


class TestRPKIValidator(unittest.TestCase):
    """Validator over a snapshot store"""

    def setUp(self):
        self.repository = VRPRepository.build([VRP(64512, IPPrefix.parse("10.0.0.0/8"), 16)])
        self.store = Mock()
        self.store.get.return_value = self.repository
        self.validator = RPKIValidator(self.store)

    def test_accepts_text_input(self):
        outcome, repository = self.validator.validate_prefix_origin("10.1.0.0/16", "AS64512")
        self.assertEqual(outcome.state, RPKIState.VALID)
        self.assertIs(repository, self.repository)

    def test_rejects_host_bits(self):
        with self.assertRaises(ValidationError):
            self.validator.validate_prefix_origin("10.1.0.1/16", 64512)

    def test_rejects_bad_asn(self):
        with self.assertRaises(ValidationError):
            self.validator.validate_prefix_origin("10.1.0.0/16", "AS-ONE")
        with self.assertRaises(ValidationError):
            self.validator.validate_prefix_origin("10.1.0.0/16", 4294967296)

    def test_unavailable_snapshot_is_not_not_found(self):
        self.store.get.side_effect = RelyingPartyUnavailable("down")
        with self.assertRaises(RelyingPartyUnavailable):
            self.validator.validate_prefix_origin("192.0.2.0/24", 64512)

    def test_vrps_for_asn(self):
        vrps, metadata = self.validator.vrps_for_asn("AS64512")
        self.assertEqual(len(vrps), 1)
        self.assertIsNone(metadata)


if __name__ == '__main__':
    unittest.main()
