# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Disk utility functions for deleting files and folders."""

from __future__ import annotations

import shutil
from logging import getLogger
from os import rmdir, scandir, unlink
from os.path import abspath, dirname, isdir, islink, lexists

from ...base.constants import TRACE

log = getLogger(__name__)


def rm_rf(path: str) -> bool:
    """Completely delete path; returns False if something is left behind."""
    path = abspath(path)
    log.log(TRACE, "rm_rf %s", path)
    if isdir(path) and not islink(path):
        shutil.rmtree(path)
    elif lexists(path):
        unlink(path)
    if lexists(path):
        log.info("rm_rf failed for %s", path)
        return False
    return True


def remove_empty_parent_paths(path: str, stop_at: str) -> None:
    """Remove now-empty directories above ``path``, never ``stop_at`` itself."""
    stop_at = abspath(stop_at)
    parent_path = dirname(abspath(path))
    while (
        parent_path != stop_at
        and parent_path.startswith(stop_at)
        and isdir(parent_path)
        and not next(scandir(parent_path), None)
    ):
        rmdir(parent_path)
        parent_path = dirname(parent_path)
