# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Configure logging for microconda."""

import logging
import re
import sys
from functools import partial
from logging import DEBUG, INFO, WARN, Filter, Formatter, StreamHandler, getLogger

from ..base.constants import TRACE
from ..common.io import attach_stderr_handler

log = getLogger(__name__)
_VERBOSITY_LEVELS = {
    0: WARN,  # standard output
    1: WARN,  # -v, detailed output
    2: INFO,  # -vv, info logging
    3: DEBUG,  # -vvv, debug logging
    4: TRACE,  # -vvvv, trace logging
}

logging.addLevelName(TRACE, "TRACE")


class TokenURLFilter(Filter):
    TOKEN_URL_PATTERN = re.compile(
        r"(|https?://)"  # \1  scheme
        r"(|\s"  # \2  space, or
        r"|(?:(?:\d{1,3}\.){3}\d{1,3})"  # ipv4, or
        r"|(?:"  # domain name
        r"(?:[a-zA-Z0-9-]{1,20}\.){0,10}"  # non-tld
        r"(?:[a-zA-Z]{2}[a-zA-Z0-9-]{0,18})"  # tld
        r"))"  # end domain name
        r"(|:\d{1,5})?"  # \3  port
        r"/t/[a-z0-9A-Z-]+/"  # token
    )
    TOKEN_REPLACE = staticmethod(partial(TOKEN_URL_PATTERN.sub, r"\1\2\3/t/<TOKEN>/"))

    def filter(self, record):
        # interpolate here so tokens passed as arguments are masked too
        if not isinstance(record.msg, str):
            return True
        if record.args:
            record.msg = record.msg % record.args
            record.args = None
        record.msg = self.TOKEN_REPLACE(record.msg)
        return True


class StdStreamHandler(StreamHandler):
    """StreamHandler writing to whatever ``sys.<sys_stream>`` is at emit time."""

    def __init__(self, sys_stream: str):
        self.sys_stream = sys_stream
        super().__init__()

    @property
    def stream(self):
        return getattr(sys, self.sys_stream)

    @stream.setter
    def stream(self, value):
        # bound by name; StreamHandler.__init__ and setStream assign here
        pass


def verbosity_to_level(verbosity: int) -> int:
    return _VERBOSITY_LEVELS[max(0, min(verbosity, max(_VERBOSITY_LEVELS)))]


def initialize_logging(verbosity: int = 0, quiet: bool = False) -> None:
    """Wire the 'microconda' logger tree for command line use.

    'microconda' logs to stderr at the level mapped from ``verbosity`` and does
    not propagate to the root logger. The 'microconda.stdout' and
    'microconda.stderr' loggers write user-facing messages straight to the
    current sys streams.
    """
    level = verbosity_to_level(verbosity)
    if quiet:
        level = max(level, logging.ERROR)
    attach_stderr_handler(
        level=level,
        logger_name="microconda",
        formatter=Formatter("%(levelname)s %(name)s: %(message)s") if level >= INFO else None,
        filters=[TokenURLFilter()],
    )
    if level <= DEBUG:
        attach_stderr_handler(level, "urllib3", filters=[TokenURLFilter()])
    initialize_std_loggers(quiet=quiet)
    log.debug("log level set to %s", logging.getLevelName(level))


def initialize_std_loggers(quiet: bool = False) -> None:
    formatter = Formatter("%(message)s")

    for stream in ("stdout", "stderr"):
        logger = getLogger(f"microconda.{stream}")
        logger.handlers = []
        logger.setLevel(WARN if quiet and stream == "stdout" else INFO)
        handler = StdStreamHandler(stream)
        handler.setLevel(INFO)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.filters = []
        logger.addFilter(TokenURLFilter())
        logger.propagate = False
