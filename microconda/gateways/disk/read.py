# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Disk utility functions for reading and processing file contents."""

from __future__ import annotations

import hashlib
import json
import os
import shlex
from functools import partial
from logging import getLogger
from os.path import isfile, join
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

from ...base.constants import PREFIX_PLACEHOLDER, FileMode
from ...exceptions import MicrocondaError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Literal

log = getLogger(__name__)


class PrefixPlaceholder(NamedTuple):
    placeholder: str
    file_mode: FileMode


def yield_lines(path: str) -> Iterator[str]:
    """Yield non-empty lines from a text file, skipping '#' comments."""
    try:
        with open(path) as fh:
            for line in fh:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                yield line
    except FileNotFoundError:
        return


def compute_sum(path: str | os.PathLike, algo: Literal["md5", "sha256"]) -> str:
    hasher = hashlib.new(algo)
    with Path(path).open("rb") as fh:
        for chunk in iter(partial(fh.read, 8192), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def read_repodata_json(extracted_package_directory: str) -> dict | None:
    path = join(extracted_package_directory, "info", "repodata_record.json")
    try:
        with open(path) as fi:
            return json.load(fi)
    except (OSError, ValueError):
        return None


def read_files(extracted_package_directory: str) -> tuple[str, ...]:
    """Relative paths a package installs, from ``info/files``."""
    info_files = join(extracted_package_directory, "info", "files")
    if isfile(info_files):
        return tuple(yield_lines(info_files))
    # packages without info/files: everything except the info directory
    root = Path(extracted_package_directory)
    return tuple(
        sorted(
            p.relative_to(root).as_posix()
            for p in root.rglob("*")
            if (p.is_file() or p.is_symlink()) and p.relative_to(root).parts[0] != "info"
        )
    )


def read_has_prefix(path: str) -> dict[str, PrefixPlaceholder]:
    """Read ``info/has_prefix`` into ``{filepath: (placeholder, FileMode)}``.

    A line contains either ``filepath`` or ``placeholder mode filepath``.
    """

    def parse_line(line):
        parts = tuple(x.strip("\"'") for x in shlex.split(line, posix=False))
        if len(parts) == 1:
            return parts[0], PrefixPlaceholder(PREFIX_PLACEHOLDER, FileMode.text)
        if len(parts) == 3:
            return parts[2], PrefixPlaceholder(parts[0], FileMode(parts[1]))
        raise MicrocondaError(
            "Invalid has_prefix file at path: %(path)s", path=str(path), line=line
        )

    return dict(parse_line(line) for line in yield_lines(path))
