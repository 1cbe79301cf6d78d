"""
Tests for the rpki-rov command line
"""

import io
import json
import logging
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from rpki_rov.main import create_parser, main
from rpki_rov.utils.config import reset_config_manager

from tests.roa_builder import build_roa, vrp_export


class TestCommandLine(unittest.TestCase):

    def setUp(self):
        reset_config_manager()
        self.addCleanup(reset_config_manager)

        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level

        def restore():
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
        self.addCleanup(restore)

        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.directory = Path(self.temp_dir.name)
        self.vrp_file = self.directory / "vrps.json"
        self.vrp_file.write_bytes(vrp_export([
            {"asn": 64512, "prefix": "10.0.0.0/8", "maxLength": 16, "ta": "ripe"},
        ]))

    def run_main(self, *argv):
        with patch('sys.stdout', new_callable=io.StringIO) as stdout:
            code = main(list(argv))
        return code, stdout.getvalue()

    def test_parser_global_options(self):
        args = create_parser().parse_args(["-v", "--vrp-file", "x.json", "roas", "AS1"])
        self.assertTrue(args.verbose)
        self.assertEqual(args.vrp_file, "x.json")
        self.assertEqual(args.command, "roas")

    def test_parser_options_after_subcommand(self):
        args = create_parser().parse_args(["roas", "--vrp-file", "x.json", "-v", "AS1"])
        self.assertTrue(args.verbose)
        self.assertFalse(args.quiet)
        self.assertEqual(args.vrp_file, "x.json")
        self.assertIsNone(args.timeout)

    def test_option_before_subcommand_kept(self):
        args = create_parser().parse_args(["--timeout", "5", "status"])
        self.assertEqual(args.timeout, 5.0)
        self.assertIsNone(args.vrp_file)

    def test_validity_options_after_subcommand(self):
        code, output = self.run_main("validity", "--vrp-file", str(self.vrp_file), "-q",
                                     "AS64512", "10.1.0.0/16")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["state"], "valid")

    def test_validity(self):
        code, output = self.run_main("-q", "--vrp-file", str(self.vrp_file),
                                     "validity", "AS64512", "10.1.0.0/16")
        self.assertEqual(code, 0)
        result = json.loads(output)
        self.assertEqual(result["state"], "valid")
        self.assertEqual(result["vrps"][0]["prefix"], "10.0.0.0/8")

    def test_roas(self):
        code, output = self.run_main("-q", "--vrp-file", str(self.vrp_file), "roas", "64512")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["asn"], 64512)

    def test_parse_roa(self):
        path = self.directory / "example.roa"
        path.write_bytes(build_roa(64496, [("203.0.113.0/24", 24)]))

        code, output = self.run_main("-q", "parse-roa", str(path))
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["asID"], 64496)

    def test_missing_roa_exit_code(self):
        code, output = self.run_main("-q", "parse-roa", str(self.directory / "absent.roa"))
        self.assertEqual(code, 1)
        self.assertIn("FileNotFound", output)

    def test_bad_prefix_exit_code(self):
        code, output = self.run_main("-q", "--vrp-file", str(self.vrp_file),
                                     "validity", "64512", "10.1.0.1/16")
        self.assertEqual(code, 1)
        self.assertIn("ValidationError", output)

    def test_missing_vrp_file_rejected(self):
        code, _ = self.run_main("-q", "--vrp-file", str(self.directory / "absent.json"), "status")
        self.assertEqual(code, 1)

    def test_status_without_relying_party(self):
        with patch.dict('os.environ', {}, clear=False) as environ:
            environ.pop('RPKI_ROV_ENDPOINT', None)
            environ.pop('RPKI_ROV_VRP_FILE', None)
            code, output = self.run_main("-q", "--config", str(self.directory / "none.json"),
                                         "status")
        self.assertEqual(code, 2)
        self.assertIn("No relying party configured", output)

    def test_no_command(self):
        with patch('sys.stdout', new_callable=io.StringIO):
            self.assertEqual(main([]), 1)


if __name__ == '__main__':
    unittest.main()
