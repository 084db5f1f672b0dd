# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Microconda's command line interface."""

from .main import main  # noqa: F401
