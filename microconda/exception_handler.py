# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Error handling and error reporting for the command line."""

from __future__ import annotations

import json
import sys
from logging import getLogger
from traceback import format_exception

from . import MicrocondaError, __version__
from .exceptions import DryRunExit

log = getLogger(__name__)


def _format_exc(exc_val: BaseException) -> str:
    return "".join(format_exception(type(exc_val), exc_val, exc_val.__traceback__))


class ExceptionHandler:
    """Run a function and turn whatever it raises into an exit code."""

    def __init__(self, json: bool = False, verbosity: int = 0):
        self.json = json
        self.verbosity = verbosity

    def __call__(self, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (Exception, KeyboardInterrupt) as exc_val:
            return self.handle_exception(exc_val)

    def write_json(self, data) -> None:
        sys.stdout.write(json.dumps(data, indent=2, sort_keys=True, default=str) + "\n")
        sys.stdout.flush()

    def handle_exception(self, exc_val: BaseException) -> int:
        if isinstance(exc_val, MicrocondaError):
            return self.handle_application_exception(exc_val)
        if isinstance(exc_val, KeyboardInterrupt):
            self.print_microconda_exception(MicrocondaError("KeyboardInterrupt"))
            return 1
        return self.handle_unexpected_exception(exc_val)

    def handle_application_exception(self, exc_val: MicrocondaError) -> int:
        self.print_microconda_exception(exc_val)
        return exc_val.return_code

    def print_microconda_exception(self, exc_val: MicrocondaError) -> None:
        if self.verbosity >= 3 and not isinstance(exc_val, DryRunExit):
            print(_format_exc(exc_val), file=sys.stderr)
        elif self.json:
            if isinstance(exc_val, DryRunExit):
                return
            self.write_json(exc_val.dump_map())
        else:
            getLogger("microconda.stderr").error("\n%r\n", exc_val)

    def handle_unexpected_exception(self, exc_val: BaseException) -> int:
        error_report = {
            "error": repr(exc_val),
            "exception_name": exc_val.__class__.__name__,
            "exception_type": str(type(exc_val)),
            "traceback": _format_exc(exc_val),
            "microconda_version": __version__,
            "command": " ".join(sys.argv),
        }
        if self.json:
            self.write_json(error_report)
        else:
            message_builder = [
                "",
                "# >>>>>>>>>>>>>>>>>>>>>> ERROR REPORT <<<<<<<<<<<<<<<<<<<<<<",
                "",
            ]
            message_builder.extend(
                "    " + line for line in error_report["traceback"].splitlines()
            )
            message_builder.extend(
                [
                    "",
                    f"`$ {error_report['command']}`",
                    "",
                    "An unexpected error has occurred.",
                    "",
                ]
            )
            getLogger("microconda.stderr").info("\n".join(message_builder))
        return 1


def microconda_exception_handler(func, *args, json=False, verbosity=0, **kwargs):
    exception_handler = ExceptionHandler(json=json, verbosity=verbosity)
    return exception_handler(func, *args, **kwargs)
