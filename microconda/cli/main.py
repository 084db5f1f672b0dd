# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Entry point for all microconda subcommands."""

from __future__ import annotations

import logging
import os
import sys
from argparse import ArgumentParser
from os.path import abspath, expanduser, join
from typing import TYPE_CHECKING

from .. import __version__
from ..base.constants import APP_NAME

if TYPE_CHECKING:
    from argparse import Namespace
    from collections.abc import Mapping

    from ..base.context import Context

log = logging.getLogger(__name__)

ROOT_PREFIX_ENV_VAR = "MICROCONDA_ROOT_PREFIX"
TARGET_PREFIX_ENV_VAR = "MICROCONDA_PREFIX"
DEFAULT_ROOT_PREFIX = join("~", f".{APP_NAME}")
RC_FILENAME = f".{APP_NAME}rc"


def add_parser_prefix(p: ArgumentParser) -> None:
    target_environment_group = p.add_argument_group("Target Environment Specification")
    target_environment_group.add_argument(
        "-p",
        "--prefix",
        metavar="PATH",
        help=f"Full path to environment location. Defaults to ${TARGET_PREFIX_ENV_VAR}.",
    )
    target_environment_group.add_argument(
        "-r",
        "--root-prefix",
        metavar="PATH",
        help="Root directory holding the package cache. "
        f"Defaults to ${ROOT_PREFIX_ENV_VAR}, then {DEFAULT_ROOT_PREFIX}.",
    )
    target_environment_group.add_argument(
        "--rc-file",
        metavar="PATH",
        help=f"YAML settings file. Defaults to <root prefix>/{RC_FILENAME}.",
    )


def add_parser_json(p: ArgumentParser) -> None:
    output_and_prompt_options = p.add_argument_group(
        "Output, Prompt, and Flow Control Options"
    )
    output_and_prompt_options.add_argument(
        "--json",
        action="store_true",
        default=None,
        help="Report all output as json. Suitable for using microconda programmatically.",
    )
    output_and_prompt_options.add_argument(
        "-v",
        "--verbose",
        action="count",
        dest="verbosity",
        default=None,
        help="Can be used multiple times. Once for detailed output, twice for INFO "
        "logging, thrice for DEBUG logging, four times for TRACE logging.",
    )
    output_and_prompt_options.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=None,
        help="Do not display progress bar.",
    )


def add_parser_transaction(p: ArgumentParser) -> None:
    output_and_prompt_options = p.add_argument_group("Transaction Options")
    output_and_prompt_options.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        default=None,
        help="Only display what would have been done.",
    )
    output_and_prompt_options.add_argument(
        "-y",
        "--yes",
        action="store_true",
        dest="always_yes",
        default=None,
        help="Do not ask for confirmation.",
    )
    output_and_prompt_options.add_argument(
        "--offline",
        action="store_true",
        default=None,
        help="Offline mode. Use cached channel metadata and packages only.",
    )


def add_parser_channels(p: ArgumentParser) -> None:
    channel_customization_options = p.add_argument_group("Channel Customization")
    channel_customization_options.add_argument(
        "-c",
        "--channel",
        dest="channels",
        action="append",
        help="Additional channel to search for packages, in priority order. "
        "Given channels replace the configured ones.",
    )


def _ssl_verify_value(value: str) -> bool | str:
    """``true``/``false``, or a CA bundle path that also turns verification on."""
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "on", "1"):
        return True
    if lowered in ("false", "no", "off", "0"):
        return False
    return _expand_path(value)


def _expand_path(value: str) -> str:
    return abspath(expanduser(value))


def add_parser_networking(p: ArgumentParser) -> None:
    networking_options = p.add_argument_group("Networking Options")
    ssl_options = networking_options.add_mutually_exclusive_group()
    ssl_options.add_argument(
        "--ssl-verify",
        type=_ssl_verify_value,
        dest="ssl_verify",
        default=None,
        metavar="{true,false,PATH}",
        help="Verify TLS certificates of remote channels. A path names the CA bundle "
        "to verify against.",
    )
    ssl_options.add_argument(
        "--cacert-path",
        type=_expand_path,
        dest="ssl_verify",
        default=None,
        metavar="PATH",
        help="CA bundle used to verify TLS certificates of remote channels.",
    )
    ssl_options.add_argument(
        "-k",
        "--insecure",
        action="store_false",
        dest="ssl_verify",
        default=None,
        help='Allow microconda to perform "insecure" SSL connections and transfers. '
        "Equivalent to setting 'ssl_verify' to 'false'.",
    )


def add_parser_allow_downgrade(p: ArgumentParser) -> None:
    p.add_argument(
        "--no-allow-downgrade",
        action="store_false",
        dest="allow_downgrade",
        default=None,
        help="Never replace an installed package by a lower version.",
    )


def generate_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog=APP_NAME,
        description="Fetch, solve and link conda packages into environments.",
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"{APP_NAME} {__version__}"
    )
    sub_parsers = parser.add_subparsers(metavar="COMMAND", dest="cmd", required=True)

    for name, help_text in (
        ("create", "Create a new environment from a list of specified packages."),
        ("install", "Install a list of packages into an existing environment."),
        ("remove", "Remove a list of packages from an existing environment."),
    ):
        p = sub_parsers.add_parser(name, help=help_text, description=help_text)
        p.add_argument(
            "specs",
            metavar="package_spec",
            nargs="*",
            help="Package specifications, e.g. 'numpy>=1.20' or 'conda-forge::zlib'.",
        )
        add_parser_prefix(p)
        add_parser_channels(p)
        add_parser_transaction(p)
        add_parser_networking(p)
        add_parser_json(p)
        if name != "remove":
            add_parser_allow_downgrade(p)

    p = sub_parsers.add_parser(
        "list",
        help="List packages installed in an environment.",
        description="List packages installed in an environment.",
    )
    add_parser_prefix(p)
    add_parser_json(p)
    return parser


def context_from_args(args: Namespace, environ: Mapping[str, str]) -> Context:
    """Settings from the rc file, overridden by the command line.

    The two prefix environment variables are the only ones consulted.
    """
    from ..base.context import Context

    root_prefix = (
        args.root_prefix
        or environ.get(ROOT_PREFIX_ENV_VAR)
        or expanduser(DEFAULT_ROOT_PREFIX)
    )
    target_prefix = args.prefix or environ.get(TARGET_PREFIX_ENV_VAR)
    rc_file = args.rc_file or join(expanduser(root_prefix), RC_FILENAME)

    overrides = {
        "root_prefix": root_prefix,
        "target_prefix": target_prefix,
        "json": args.json,
        "quiet": args.quiet,
        "verbosity": args.verbosity,
    }
    for key in (
        "channels", "dry_run", "always_yes", "offline", "allow_downgrade", "ssl_verify"
    ):
        value = getattr(args, key, None)
        overrides[key] = tuple(value) if key == "channels" and value else value
    return Context.from_rc(rc_file, **overrides)


def execute_list(context: Context) -> int:
    from ..api import list_packages
    from ..reporters import render

    records = list_packages(context)
    if context.json:
        render([record.dump() for record in records], context)
        return 0

    lines = [f"# packages in environment at {context.target_prefix}:", "#"]
    if records:
        widths = [
            max(len(getattr(record, attr)) for record in records)
            for attr in ("name", "version", "build")
        ]
        lines.extend(
            f"{r.name:<{widths[0]}}  {r.version:<{widths[1]}}  "
            f"{r.build:<{widths[2]}}  {r.channel}"
            for r in records
        )
    render("\n".join(lines), context)
    return 0


def execute_transaction(args: Namespace, context: Context) -> int:
    from .. import api
    from ..reporters import render

    operation = getattr(api, args.cmd)
    result = operation(context, args.specs)
    if context.json:
        summary = dict(result.summary, success=True)
        render(summary, context)
    elif result.executed:
        render("Transaction finished.", context)
    return 0


def do_call(args: Namespace, environ: Mapping[str, str]) -> int:
    context = context_from_args(args, environ)
    log.debug("running %s with %r", args.cmd, context)
    if args.cmd == "list":
        return execute_list(context)
    return execute_transaction(args, context)


def main(*args, environ: Mapping[str, str] | None = None) -> int:
    """Run microconda with ``args`` (default ``sys.argv[1:]``); return the exit code."""
    from ..exception_handler import microconda_exception_handler
    from ..gateways.logging import initialize_logging

    args = args or tuple(sys.argv[1:])
    environ = os.environ if environ is None else environ

    parser = generate_parser()
    try:
        parsed = parser.parse_args(args)
    except SystemExit as e:
        # argparse exits 2 on usage errors, 0 for --help and --version
        return e.code if isinstance(e.code, int) else 2

    initialize_logging(parsed.verbosity or 0, bool(parsed.quiet))
    if parsed.json:
        # keep stdout parseable
        logging.getLogger("microconda.stdout").setLevel(logging.CRITICAL + 10)

    return microconda_exception_handler(
        do_call,
        parsed,
        environ,
        json=bool(parsed.json),
        verbosity=parsed.verbosity or 0,
    )


if __name__ == "__main__":
    sys.exit(main())
