# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Utility functions."""

from __future__ import annotations

# unit, decimals
_BYTE_UNITS = (("KB", 0), ("MB", 1), ("GB", 2))


def human_bytes(n: int) -> str:
    """
    Return the number of bytes n in more human readable form.

    Examples:
        >>> human_bytes(42)
        '42 B'
        >>> human_bytes(1042)
        '1 KB'
        >>> human_bytes(10004242)
        '9.5 MB'
        >>> human_bytes(100000004242)
        '93.13 GB'
    """
    if n < 1024:
        return f"{n} B"
    value = n / 1024
    for unit, decimals in _BYTE_UNITS[:-1]:
        if value < 1024:
            return f"{value:.{decimals}f} {unit}"
        value /= 1024
    unit, decimals = _BYTE_UNITS[-1]
    return f"{value:.{decimals}f} {unit}"
