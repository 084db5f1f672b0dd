# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Disk gateway: create, read, delete and lock files."""

import os
from errno import EEXIST
from logging import getLogger
from os.path import isdir

from ...base.constants import TRACE

log = getLogger(__name__)


def mkdir_p(path):
    try:
        log.log(TRACE, "making directory %s", path)
        if path:
            os.makedirs(path)
            return isdir(path) and path
    except OSError as e:
        if e.errno == EEXIST and isdir(path):
            return path
        raise
