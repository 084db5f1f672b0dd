# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""
Gateways isolate interaction of microconda code with the outside world. Disk manipulation,
http requests, and logger setup all live here. Gateways should be limited to this
interaction and not contain package manager logic.
"""
