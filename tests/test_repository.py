"""
Tests for the VRP repository index
"""

import random
import unittest
from datetime import datetime, timezone

from rpki_rov.models import VRP, AddressFamily, IPPrefix, SnapshotMetadata
from rpki_rov.validators.repository import VRPRepository


def vrp(asn, prefix, max_length=None, ta=None):
    parsed = IPPrefix.parse(prefix)
    return VRP(asn, parsed, parsed.length if max_length is None else max_length, ta=ta)


class TestCoveringVRPs(unittest.TestCase):
    """Covering-prefix queries"""

    def setUp(self):
        self.vrps = [
            vrp(64512, "10.0.0.0/8", 16),
            vrp(64513, "10.1.0.0/16", 24),
            vrp(64514, "10.1.1.0/24"),
            vrp(64515, "11.0.0.0/8"),
            vrp(64516, "2001:db8::/32", 48),
        ]
        self.repository = VRPRepository.build(self.vrps)

    def test_covering_includes_less_specifics(self):
        covering = self.repository.covering_vrps(IPPrefix.parse("10.1.1.0/24"))
        self.assertEqual(covering, (self.vrps[0], self.vrps[1], self.vrps[2]))

    def test_equal_prefix_covers(self):
        covering = self.repository.covering_vrps(IPPrefix.parse("10.0.0.0/8"))
        self.assertEqual(covering, (self.vrps[0],))

    def test_more_specific_vrp_does_not_cover(self):
        covering = self.repository.covering_vrps(IPPrefix.parse("10.0.0.0/7"))
        self.assertEqual(covering, ())

    def test_sibling_prefix_not_covering(self):
        self.assertIn(self.vrps[0], self.repository.covering_vrps(IPPrefix.parse("10.1.0.0/16")))
        self.assertEqual(self.repository.covering_vrps(IPPrefix.parse("11.0.0.0/16")),
                         (self.vrps[3],))
        self.assertEqual(self.repository.covering_vrps(IPPrefix.parse("12.0.0.0/16")), ())

    def test_families_are_separate(self):
        covering = self.repository.covering_vrps(IPPrefix.parse("2001:db8:1::/48"))
        self.assertEqual(covering, (self.vrps[4],))
        self.assertEqual(self.repository.covering_vrps(IPPrefix.parse("::/0")), ())

    def test_default_route_vrp_covers_everything(self):
        repository = VRPRepository.build([vrp(64500, "0.0.0.0/0", 8)])
        self.assertEqual(len(repository.covering_vrps(IPPrefix.parse("203.0.113.0/24"))), 1)

    def test_covering_matches_brute_force(self):
        queries = ["10.0.0.0/8", "10.1.0.0/16", "10.1.1.0/24", "10.1.1.128/25",
                   "10.2.0.0/16", "11.0.0.0/8", "2001:db8::/32", "2001:db9::/32"]
        for text in queries:
            query = IPPrefix.parse(text)
            expected = sorted((v for v in self.vrps if v.prefix.covers(query)), key=VRP.sort_key)
            self.assertEqual(self.repository.covering_vrps(query), tuple(expected), text)

    def test_large_random_set_matches_brute_force(self):
        rng = random.Random(6811)

        def random_prefix(family, max_len):
            length = rng.randint(0, max_len)
            width = family.width
            network = (rng.getrandbits(length) << (width - length)) if length else 0
            return IPPrefix(family, network, length)

        # Short prefixes keep overlaps frequent
        entries = []
        for _ in range(2000):
            family = rng.choice(list(AddressFamily))
            prefix = random_prefix(family, 12 if family is AddressFamily.IPV4 else 20)
            entries.append(VRP(rng.randint(1, 50), prefix,
                               rng.randint(prefix.length, family.width)))
        repository = VRPRepository.build(entries)

        for _ in range(300):
            family = rng.choice(list(AddressFamily))
            query = random_prefix(family, family.width)
            expected = sorted({v for v in entries if v.prefix.covers(query)}, key=VRP.sort_key)
            self.assertEqual(repository.covering_vrps(query), tuple(expected), str(query))


class TestRepositoryBuild(unittest.TestCase):
    """Construction, deduplication and projections"""

    def test_duplicates_collapse(self):
        entries = [vrp(64512, "192.0.2.0/24", 24), vrp(64512, "192.0.2.0/24", 24)]
        repository = VRPRepository.build(entries)
        self.assertEqual(len(repository), 1)

    def test_trust_anchor_not_part_of_identity(self):
        entries = [vrp(64512, "192.0.2.0/24", ta="ripe"), vrp(64512, "192.0.2.0/24", ta="arin")]
        self.assertEqual(len(VRPRepository.build(entries)), 1)

    def test_rebuild_is_idempotent(self):
        entries = [vrp(64512, "192.0.2.0/24"), vrp(64513, "198.51.100.0/24", 26)]
        once = VRPRepository.build(entries)
        twice = VRPRepository.build(list(once) + entries)
        self.assertEqual(list(once), list(twice))

    def test_distinct_max_length_kept(self):
        entries = [vrp(64512, "192.0.2.0/24", 24), vrp(64512, "192.0.2.0/24", 26)]
        self.assertEqual(len(VRPRepository.build(entries)), 2)

    def test_vrps_for_asn_sorted(self):
        entries = [vrp(64512, "198.51.100.0/24"), vrp(64513, "192.0.2.0/24"),
                   vrp(64512, "192.0.2.0/24"), vrp(64512, "2001:db8::/32")]
        repository = VRPRepository.build(entries)

        self.assertEqual([str(v.prefix) for v in repository.vrps_for_asn(64512)],
                         ["192.0.2.0/24", "198.51.100.0/24", "2001:db8::/32"])
        self.assertEqual(repository.vrps_for_asn(65000), ())

    def test_iteration_order_independent_of_input(self):
        entries = [vrp(64513, "192.0.2.0/24"), vrp(64512, "198.51.100.0/24"),
                   vrp(64512, "192.0.2.0/24")]
        forward = list(VRPRepository.build(entries))
        backward = list(VRPRepository.build(reversed(entries)))
        self.assertEqual(forward, backward)
        self.assertEqual(forward[0].asn, 64512)

    def test_metadata_carried(self):
        metadata = SnapshotMetadata(source="test", fetched_at=datetime.now(timezone.utc),
                                    vrp_count=0)
        repository = VRPRepository.build([], metadata)
        self.assertIs(repository.metadata, metadata)
        self.assertEqual(len(repository), 0)
        self.assertEqual(repository.covering_vrps(IPPrefix.parse("192.0.2.0/24")), ())


if __name__ == '__main__':
    unittest.main()
