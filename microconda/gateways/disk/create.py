# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Disk utility functions for creating new files or directories."""

from __future__ import annotations

import json
import os
import sys
from logging import getLogger
from os import link, readlink, symlink
from os.path import dirname, islink, join, lexists
from shutil import copyfileobj, copystat
from typing import TYPE_CHECKING
from uuid import uuid4

import conda_package_handling.api

from ...base.constants import TRACE, LinkType
from . import mkdir_p

if TYPE_CHECKING:
    from typing import Any

log = getLogger(__name__)

on_win = sys.platform == "win32"


def write_as_json_to_file(file_path: str, obj: Any) -> None:
    """Write JSON next to the target and rename it into place."""
    log.log(TRACE, "writing json to file %s", file_path)
    tmp_path = f"{file_path}.{uuid4().hex[:8]}.tmp"
    with open(tmp_path, "w") as fo:
        json.dump(obj, fo, indent=2, sort_keys=True)
        fo.write("\n")
    os.replace(tmp_path, file_path)


def extract_tarball(tarball_full_path: str, destination_directory: str) -> None:
    log.debug("extracting %s\n  to %s", tarball_full_path, destination_directory)
    mkdir_p(destination_directory)
    conda_package_handling.api.extract(tarball_full_path, dest_dir=destination_directory)


def create_hard_link_or_copy(src: str, dst: str) -> LinkType:
    if islink(src):
        copy(src, dst)
        return LinkType.copy
    try:
        log.log(TRACE, "creating hard link %s => %s", src, dst)
        link(src, dst)
        return LinkType.hardlink
    except OSError:
        log.info("hard link failed, so copying %s => %s", src, dst)
        _do_copy(src, dst)
        return LinkType.copy


def copy(src: str, dst: str) -> None:
    # on unix, make sure relative symlinks stay symlinks
    if not on_win and islink(src):
        src_points_to = readlink(src)
        if not src_points_to.startswith("/"):
            log.log(TRACE, "soft linking %s => %s", src, dst)
            symlink(src_points_to, dst)
            return
    _do_copy(src, dst)


def _do_copy(src: str, dst: str) -> None:
    log.log(TRACE, "copying %s => %s", src, dst)
    buffer_size = 4194304  # 4 MB, same as coreutils cp
    with open(src, "rb") as fsrc, open(dst, "wb") as fdst:
        copyfileobj(fsrc, fdst, buffer_size)
    try:
        copystat(src, dst)
    except OSError as e:  # pragma: no cover
        log.debug("%r", e)


def link_file(src: str, dst: str, link_type: LinkType) -> LinkType:
    """Materialize ``src`` at ``dst``, creating parent directories."""
    mkdir_p(dirname(dst))
    if lexists(dst):
        os.unlink(dst)
    if link_type == LinkType.hardlink:
        return create_hard_link_or_copy(src, dst)
    copy(src, dst)
    return LinkType.copy


def hardlink_supported(source_file: str, dest_dir: str) -> bool:
    test_file = join(dest_dir, f".tmp.{uuid4().hex[:8]}")
    mkdir_p(dest_dir)
    try:
        link(source_file, test_file)
        supported = not islink(test_file)
    except OSError:
        supported = False
    finally:
        if lexists(test_file):
            os.unlink(test_file)
    log.log(
        TRACE,
        "hard link %s for %s => %s",
        "supported" if supported else "IS NOT supported",
        source_file,
        dest_dir,
    )
    return supported
