# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Common I/O utilities: string helpers, stream capture and logger wiring."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from io import StringIO
from logging import NOTSET, WARN, Formatter, StreamHandler, getLogger
from textwrap import dedent
from threading import RLock

log = getLogger(__name__)

_FORMATTER = Formatter("%(levelname)s %(name)s:%(funcName)s(%(lineno)d): %(message)s")
_LOGGER_LOCK = RLock()


def dals(string: str) -> str:
    """dedent and left-strip"""
    return dedent(string).lstrip()


def dashlist(iterable, indent: int = 2) -> str:
    return "".join("\n" + " " * indent + "- " + str(x) for x in iterable)


@contextmanager
def captured():
    """Swap sys.stdout and sys.stderr for StringIO buffers.

    Not thread-safe; the original streams are restored on exit.
    """

    class CapturedText:
        stdout = ""
        stderr = ""

    saved_stdout, saved_stderr = sys.stdout, sys.stderr
    sys.stdout = outfile = StringIO()
    sys.stderr = errfile = StringIO()
    c = CapturedText()
    try:
        yield c
    finally:
        c.stdout, c.stderr = outfile.getvalue(), errfile.getvalue()
        sys.stdout, sys.stderr = saved_stdout, saved_stderr


def attach_stderr_handler(
    level=WARN, logger_name=None, propagate=False, formatter=None, filters=None
):
    logr = getLogger(logger_name)
    old_stderr_handler = next(
        (handler for handler in logr.handlers if handler.name == "stderr"), None
    )

    new_stderr_handler = StreamHandler(sys.stderr)
    new_stderr_handler.name = "stderr"
    new_stderr_handler.setLevel(NOTSET)
    new_stderr_handler.setFormatter(formatter or _FORMATTER)
    for filter_ in filters or ():
        new_stderr_handler.addFilter(filter_)

    with _LOGGER_LOCK:
        if old_stderr_handler:
            logr.removeHandler(old_stderr_handler)
        logr.addHandler(new_stderr_handler)
        logr.setLevel(level)
        logr.propagate = propagate
