#!/usr/bin/env python3
"""
RPKI ROV - ROA decoding and route origin validation

Usage examples:
rpki-rov --endpoint http://localhost:8323 validity AS64512 192.0.2.0/24
rpki-rov parse-roa example.roa
rpki-rov --vrp-file vrps.json serve
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from rpki_rov import __version__
from rpki_rov.tools.handlers import RPKITools
from rpki_rov.utils.config import get_config_manager
from rpki_rov.utils.error_handling import (
    ErrorFormatter, ParameterValidator, RPKIError, handle_errors, print_warning,
)
from rpki_rov.utils.logging import setup_logging


def setup_app_logging(config, verbose: bool = False, quiet: bool = False):
    """Configure logging for the application"""
    if quiet:
        level = 'WARNING'
    elif verbose:
        level = 'DEBUG'
    else:
        level = None  # configured level
    setup_logging(config, level=level, console_colors=sys.stderr.isatty())


def _print_json(model) -> None:
    print(json.dumps(model.model_dump(mode='json', by_alias=True), indent=2))


def _load_config(args):
    """Resolve configuration file, environment and command-line overrides"""
    manager = get_config_manager(Path(args.config) if args.config else None)
    manager.update_relying_party_config(
        endpoint=args.endpoint,
        vrp_file=args.vrp_file,
        timeout=args.timeout,
    )
    return manager.get_config()


def _build_tools(args) -> RPKITools:
    return RPKITools.from_config(_load_config(args))


@handle_errors('rpki-rov.parse-roa')
def cmd_parse_roa(args):
    """Decode and verify a ROA file"""
    _print_json(_build_tools(args).parse_roa_file(args.file))
    return 0


@handle_errors('rpki-rov.validity')
def cmd_validity(args):
    """Route origin validity of an (ASN, prefix) pair"""
    result = _build_tools(args).validity(args.asn, args.prefix)
    _print_json(result)
    return 0


@handle_errors('rpki-rov.roas')
def cmd_roas(args):
    """VRPs authorizing an origin AS"""
    _print_json(_build_tools(args).roas(args.asn))
    return 0


@handle_errors('rpki-rov.status')
def cmd_status(args):
    """Relying-party status"""
    _print_json(_build_tools(args).status())
    return 0


@handle_errors('rpki-rov.serve')
def cmd_serve(args):
    """Serve the tool operations over HTTP"""
    import uvicorn
    from rpki_rov.api.app import create_app

    config = _load_config(args)
    issues = get_config_manager().validate_config()
    for issue in issues:
        print_warning(issue)

    tools = RPKITools.from_config(config)
    host = args.host or config.server.host
    port = args.port or config.server.port

    logger = logging.getLogger('rpki-rov.serve')
    logger.info(f"Serving RPKI tools on http://{host}:{port}")
    uvicorn.run(
        create_app(tools),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
        proxy_headers=False,
    )
    return 0


def create_common_flags_parent(suppress_defaults: bool = False):
    """
    Create a parent parser with common global flags.

    Subcommands get a copy with `suppress_defaults` so a flag omitted
    after the subcommand keeps the value given before it.
    """
    parent_parser = argparse.ArgumentParser(
        add_help=False,
        argument_default=argparse.SUPPRESS if suppress_defaults else None,
    )
    verbose_group = parent_parser.add_mutually_exclusive_group()
    verbose_group.add_argument('-v', '--verbose', action='store_true',
                               help='Enable verbose output')
    verbose_group.add_argument('-q', '--quiet', action='store_true',
                               help='Only show warnings and errors')
    parent_parser.add_argument('--config', metavar='PATH',
                               help='Configuration file (JSON)')
    parent_parser.add_argument('--endpoint', metavar='URL',
                               help='Relying party base URL (or set RPKI_ROV_ENDPOINT)')
    parent_parser.add_argument('--vrp-file', metavar='PATH',
                               help='Local VRP export used instead of the relying party')
    parent_parser.add_argument('--timeout', type=float, metavar='SECONDS',
                               help='Relying party request timeout')
    return parent_parser


def create_parser():
    """Create the argument parser"""
    common_flags_parent = create_common_flags_parent()
    subcommand_flags_parent = create_common_flags_parent(suppress_defaults=True)

    parser = argparse.ArgumentParser(
        prog='rpki-rov',
        description='ROA decoding and route origin validation backed by an RPKI relying party',
        parents=[common_flags_parent],
    )
    parser.add_argument('--version', action='version', version=f'rpki-rov {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    parse_roa_parser = subparsers.add_parser('parse-roa',
                                             help='Decode and verify a ROA file',
                                             parents=[subcommand_flags_parent])
    parse_roa_parser.add_argument('file', help='DER-encoded ROA (.roa) file')

    validity_parser = subparsers.add_parser('validity',
                                            help='Route origin validity of a prefix-origin pair',
                                            parents=[subcommand_flags_parent])
    validity_parser.add_argument('asn', help='Origin AS (e.g., 64512 or AS64512)')
    validity_parser.add_argument('prefix', help='Announced prefix (e.g., 192.0.2.0/24)')

    roas_parser = subparsers.add_parser('roas',
                                        help='VRPs authorizing an origin AS',
                                        parents=[subcommand_flags_parent])
    roas_parser.add_argument('asn', help='Origin AS (e.g., 64512 or AS64512)')

    subparsers.add_parser('status',
                          help='Relying party status',
                          parents=[subcommand_flags_parent])

    serve_parser = subparsers.add_parser('serve',
                                         help='Serve the tools over HTTP',
                                         parents=[subcommand_flags_parent])
    serve_parser.add_argument('--host', help='Bind address (overrides config)')
    serve_parser.add_argument('--port', type=int, help='Bind port (overrides config)')

    return parser


def validate_common_args(args):
    """Validate arguments shared by every subcommand"""
    if args.timeout is not None:
        args.timeout = ParameterValidator.validate_timeout(args.timeout)
    if args.vrp_file is not None:
        ParameterValidator.validate_file_exists(args.vrp_file, 'vrp-file')
    return args


def main(argv=None):
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = get_config_manager(Path(args.config) if args.config else None).get_config()
    setup_app_logging(config, args.verbose, args.quiet)

    try:
        args = validate_common_args(args)
    except RPKIError as e:
        print(ErrorFormatter.format_error(e))
        return 1

    command_functions = {
        'parse-roa': cmd_parse_roa,
        'validity': cmd_validity,
        'roas': cmd_roas,
        'status': cmd_status,
        'serve': cmd_serve,
    }

    try:
        return command_functions[args.command](args)
    except KeyboardInterrupt:
        print_warning("Operation interrupted by user")
        return 130


if __name__ == '__main__':
    sys.exit(main())
