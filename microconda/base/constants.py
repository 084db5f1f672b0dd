# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""
This file should hold most string literals and magic numbers used throughout the code base.
The exception is if a literal is specifically meant to be private to and isolated within a module.
"""

from __future__ import annotations

import struct
from enum import Enum
from os.path import join
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Final

PREFIX_PLACEHOLDER: Final = (
    "/opt/anaconda1anaconda2"
    # split so that running this program on itself leaves it unchanged
    "anaconda3"
)

machine_bits: Final = 8 * struct.calcsize("P")

APP_NAME: Final = "microconda"
DEFAULT_CHANNEL_ALIAS: Final = "https://conda.anaconda.org"
DEFAULT_CHANNELS: Final = ("conda-forge",)

CONDA_PACKAGE_EXTENSION_V1: Final = ".tar.bz2"
CONDA_PACKAGE_EXTENSION_V2: Final = ".conda"
CONDA_PACKAGE_EXTENSIONS: Final = (
    CONDA_PACKAGE_EXTENSION_V2,
    CONDA_PACKAGE_EXTENSION_V1,
)
CONDA_TEMP_EXTENSION: Final = ".tmp"

UNKNOWN_CHANNEL: Final = "<unknown>"
REPODATA_FN: Final = "repodata.json"
CACHE_STATE_SUFFIX: Final = ".info.json"

#: Cache-info keys written next to cached repodata.
ETAG_KEY: Final = "etag"
LAST_MODIFIED_KEY: Final = "mod"
CACHE_CONTROL_KEY: Final = "cache_control"
URL_KEY: Final = "url"

PREFIX_MAGIC_FILE: Final = join("conda-meta", "history")
PREFIX_META_DIR: Final = "conda-meta"
PACKAGE_CACHE_CACHE_DIR: Final = "cache"
REPODATA_RECORD_PATH: Final = join("info", "repodata_record.json")

NOARCH_SUBDIR: Final = "noarch"
KNOWN_SUBDIRS: Final = (
    "noarch",
    "linux-32",
    "linux-64",
    "linux-aarch64",
    "linux-armv6l",
    "linux-armv7l",
    "linux-ppc64",
    "linux-ppc64le",
    "linux-s390x",
    "osx-64",
    "osx-arm64",
    "win-32",
    "win-64",
    "win-arm64",
    "zos-z",
)

#: Log level below DEBUG used by the solver internals.
TRACE: Final = 5

#: Priority reserved for the repo built from an installed prefix.
INSTALLED_PRIORITY: Final = 1 << 30

#: HTTP statuses that are retried with backoff by the transport.
RETRY_STATUS_FORCELIST: Final = (429, 500, 502, 503, 504)


class LinkType(Enum):
    hardlink = 1
    softlink = 2
    copy = 3

    def __str__(self):
        return self.name


class FileMode(Enum):
    """Mode in which the prefix placeholder is written into a file."""

    text = "text"
    binary = "binary"

    def __str__(self):
        return str(self.value)


class SolverAction(Enum):
    INSTALL = "install"
    INSTALL_ALLOW_DOWNGRADE = "install_allow_downgrade"
    REMOVE = "remove"

    def __str__(self):
        return self.value
