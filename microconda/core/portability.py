# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Rewrite the build-time prefix placeholder in linked files."""

from __future__ import annotations

import re
from logging import getLogger
from os.path import realpath

from ..base.constants import PREFIX_PLACEHOLDER, TRACE, FileMode
from ..exceptions import BinaryPrefixReplacementError, MicrocondaError

log = getLogger(__name__)


# three capture groups: whole_shebang, executable, options
SHEBANG_REGEX = (
    rb"^(#!"  # pretty much the whole match string
    rb"(?:[ ]*)"  # allow spaces between #! and beginning of the executable path
    rb"(/(?:\\ |[^ \n\r\t])*)"  # the executable, escaped spaces allowed
    rb"(.*)"  # the rest of the line can contain option flags
    rb")$"
)  # end whole_shebang group

MAX_SHEBANG_LENGTH = 127


class _PaddingError(Exception):
    pass


def update_prefix(
    path: str,
    new_prefix: str,
    placeholder: str = PREFIX_PLACEHOLDER,
    mode: FileMode = FileMode.text,
) -> bool:
    """
    Replace ``placeholder`` with ``new_prefix`` in the file at ``path``.

    The file must not be a hard link into the package cache; callers copy it
    first. Returns True if the file was rewritten.

    :raises BinaryPrefixReplacementError: If a binary file would change size.
    """
    path = realpath(path)
    with open(path, "rb") as fh:
        original_data = fh.read()

    try:
        data = replace_prefix(mode, original_data, placeholder, new_prefix)
    except _PaddingError:
        raise BinaryPrefixReplacementError(
            path, placeholder, new_prefix, len(original_data), -1
        )
    data = replace_long_shebang(mode, data)
    if data == original_data:
        return False
    if mode == FileMode.binary and len(data) != len(original_data):
        raise BinaryPrefixReplacementError(
            path, placeholder, new_prefix, len(original_data), len(data)
        )

    with open(path, "wb") as fh:
        fh.write(data)
    log.log(TRACE, "replaced prefix placeholder in %s", path)
    return True


def replace_prefix(
    mode: FileMode,
    data: bytes,
    placeholder: str,
    new_prefix: str,
) -> bytes:
    """
    Replace ``placeholder`` with ``new_prefix`` in ``data``.

    In text mode a placeholder in the shebang line has its spaces escaped, so
    :func:`replace_long_shebang` can fall back to ``/usr/bin/env``. In binary
    mode each C string holding the placeholder keeps its length, padded with
    null bytes.
    """
    if mode == FileMode.text:
        newline_pos = data.find(b"\n")
        if newline_pos > -1:
            shebang_line, rest_of_data = data[:newline_pos], data[newline_pos:]
            shebang_placeholder = f"#!{placeholder}".encode()
            if shebang_placeholder in shebang_line:
                escaped_shebang = f"#!{new_prefix}".replace(" ", "\\ ").encode()
                shebang_line = shebang_line.replace(shebang_placeholder, escaped_shebang)
                data = shebang_line + rest_of_data
        return data.replace(placeholder.encode(), new_prefix.encode())
    elif mode == FileMode.binary:
        return binary_replace(data, placeholder.encode(), new_prefix.encode())
    else:
        raise MicrocondaError("Invalid mode: %(mode)r", mode=mode)


def binary_replace(data: bytes, search: bytes, replacement: bytes) -> bytes:
    """
    Replace ``search`` with ``replacement`` inside each null-terminated string
    of ``data``, padding with null bytes so the total length never changes.

    :raises _PaddingError: If ``replacement`` is longer than ``search``.
    """

    def replace(match: re.Match[bytes]) -> bytes:
        occurrences = match.group().count(search)
        padding = (len(search) - len(replacement)) * occurrences
        if padding < 0:
            raise _PaddingError
        return match.group().replace(search, replacement) + b"\0" * padding

    original_data_len = len(data)
    pat = re.compile(re.escape(search) + b"(?:(?!(?:\0)).)*\0", flags=re.DOTALL)
    data = pat.sub(replace, data)
    assert len(data) == original_data_len

    return data


def replace_long_shebang(mode: FileMode, data: bytes) -> bytes:
    """
    Shorten a shebang that is too long for the kernel, or whose interpreter
    path contains escaped spaces, to ``#!/usr/bin/env <executable>``.
    """
    if mode != FileMode.text:
        return data
    shebang_match = re.match(SHEBANG_REGEX, data, re.MULTILINE)
    if shebang_match:
        whole_shebang, executable, options = shebang_match.groups()
        prefix, executable_name = executable.decode("utf-8").rsplit("/", 1)
        if len(whole_shebang) > MAX_SHEBANG_LENGTH or "\\ " in prefix:
            new_shebang = f"#!/usr/bin/env {executable_name}{options.decode('utf-8')}"
            data = data.replace(whole_shebang, new_shebang.encode("utf-8"))
    return data
