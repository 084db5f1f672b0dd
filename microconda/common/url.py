# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Common URL utilities."""

from __future__ import annotations

import re
from os.path import abspath, expanduser
from urllib.parse import quote, unquote, urlsplit

file_scheme = "file://"

_url_re = re.compile(r"^[a-z][a-z0-9.+-]*://", re.IGNORECASE)
_token_re = re.compile(r"/t/[a-zA-Z0-9-]+/")


def is_url(url: str | None) -> bool:
    return bool(url) and bool(_url_re.match(url))


def path_to_url(path: str) -> str:
    if not path:
        raise ValueError("Not allowed: %r" % path)
    if path.startswith(file_scheme):
        return path
    path = abspath(expanduser(path)).replace("\\", "/")
    # only characters that cannot appear in a url path are percent encoded
    path = quote(path, safe="!'()*-._/:")
    if not path.startswith("/"):
        # windows drive letter
        path = "/" + path
    return file_scheme + path


def url_to_path(url: str) -> str:
    """Convert a file:// URL to a path.

    Relative file URLs (i.e. `file:relative/path`) are not supported.
    """
    if not url.startswith(file_scheme):
        raise ValueError("You can only turn absolute file: urls into paths (not %s)" % url)
    _, netloc, path, _, _ = urlsplit(url)
    path = unquote(path)
    if netloc not in ("", "localhost", "127.0.0.1", "::1"):
        netloc = "//" + netloc
    else:
        netloc = ""
        if re.match("^/([a-z])[:|]", path, re.I):
            path = path[1] + ":" + path[3:]
    return netloc + path


def join_url(*args: str) -> str:
    start = "/" if not args[0] or args[0].startswith("/") else ""
    joined = "/".join(filter(None, (x.strip("/") for x in args)))
    return start + joined


def mask_anaconda_token(url: str) -> str:
    return _token_re.sub("/t/<TOKEN>/", url)


def maybe_unquote(url: str | None) -> str | None:
    return unquote(url) if url else url


def split_anaconda_token(url: str) -> tuple[str, str | None]:
    """
    Examples:
        >>> split_anaconda_token("https://1.2.3.4/t/tk-123-456/path")
        ('https://1.2.3.4/path', 'tk-123-456')
        >>> split_anaconda_token("https://1.2.3.4/path")
        ('https://1.2.3.4/path', None)
    """
    _token_match = re.search(r"/t/([a-zA-Z0-9-]*)", url)
    token = _token_match.groups()[0] if _token_match else None
    cleaned_url = url.replace("/t/" + token, "", 1) if token is not None else url
    return cleaned_url.rstrip("/"), token
