# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Core logic: repodata, index, solver, package cache, prefix and transactions."""
