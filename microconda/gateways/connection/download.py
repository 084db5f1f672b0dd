# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Download logic for package archives.

Archives are streamed into ``<target>.partial`` while holding a file lock,
verified against the record's size and checksums, and only then renamed onto
the target path. A target path therefore never holds a truncated or
unverified archive.
"""

from __future__ import annotations

import hashlib
import os
import warnings
from contextlib import contextmanager
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING

from ... import MicrocondaError
from ...common.io import dals
from ...exceptions import (
    CacheCorruption,
    ChecksumMismatchError,
    MicrocondaHTTPError,
    MicrocondaSSLError,
    MicrocondaValueError,
)
from ..disk.lock import lock
from . import (
    ChunkedEncodingError,
    ConnectionError,
    HTTPError,
    InsecureRequestWarning,
    SSLError,
    Timeout,
)
from .session import get_session

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import BinaryIO

    from requests import Response

    from ...base.context import Context

log = getLogger(__name__)

CHUNK_SIZE = 1 << 14

# one initial fetch plus one re-fetch after a checksum mismatch
DOWNLOAD_ATTEMPTS = 2


def download(
    url: str,
    target_full_path: str | os.PathLike,
    context: Context,
    md5: str | None = None,
    sha256: str | None = None,
    size: int | None = None,
    progress_update_callback: Callable[[float], None] | None = None,
) -> None:
    """Download ``url`` to ``target_full_path``, verifying size and checksums.

    A download that fails verification is fetched once more; a second
    mismatch raises :class:`CacheCorruption`.
    """
    if not context.ssl_verify:
        warnings.simplefilter("ignore", InsecureRequestWarning)

    target_full_path = Path(target_full_path)
    with _translate_http_errors(url):
        for attempt in range(1, DOWNLOAD_ATTEMPTS + 1):
            try:
                with _partial_file(target_full_path) as partial:
                    _stream(url, partial, context, progress_update_callback)
                    _verify(partial, url, target_full_path, md5=md5, sha256=sha256, size=size)
                return
            except ChecksumMismatchError as e:
                if attempt == DOWNLOAD_ATTEMPTS:
                    raise CacheCorruption(**e._kwargs) from e
                log.warning("Retrying download with bad %s %s", e._kwargs["checksum_type"], url)


def _stream(
    url: str,
    fh: BinaryIO,
    context: Context,
    progress_update_callback: Callable[[float], None] | None,
) -> int:
    response: Response = get_session(context).get(
        url, stream=True, timeout=context.remote_timeout
    )
    log.debug("GET %s -> %s", url, response.status_code)
    response.raise_for_status()

    content_length = int(response.headers.get("Content-Length", 0))
    streamed = 0
    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
        try:
            fh.write(chunk)
        except OSError as e:
            raise MicrocondaError(
                "Failed to write to %(target_path)s\n  errno: %(errno)d",
                target_path=fh.name,
                errno=e.errno,
            )
        streamed += len(chunk)
        if content_length and progress_update_callback:
            progress_update_callback(min(streamed / content_length, 1.0))

    if content_length and streamed != content_length:
        raise MicrocondaError(
            dals(
                """
                Downloaded bytes did not match Content-Length
                    url: %(url)s
                    Content-Length: %(content_length)d
                    downloaded bytes: %(downloaded_bytes)d
                """
            ),
            url=url,
            content_length=content_length,
            downloaded_bytes=streamed,
        )
    return streamed


def _hexdigest(fh: BinaryIO, algorithm: str) -> str:
    hasher = hashlib.new(algorithm)
    fh.seek(0)
    while chunk := fh.read(CHUNK_SIZE):
        hasher.update(chunk)
    return hasher.hexdigest()


def _verify(
    fh: BinaryIO,
    url: str,
    target_full_path: Path,
    *,
    md5: str | None,
    sha256: str | None,
    size: int | None,
) -> None:
    fh.flush()
    if size:
        actual_size = os.fstat(fh.fileno()).st_size
        if actual_size != size:
            log.debug("size mismatch for %s (%s != %s)", url, actual_size, size)
            raise ChecksumMismatchError(url, target_full_path, "size", size, actual_size)

    for algorithm, expected in (("sha256", sha256), ("md5", md5)):
        if not expected:
            continue
        try:
            bytes.fromhex(expected)
        except ValueError as e:
            raise MicrocondaValueError(
                "Invalid %(algorithm)s checksum %(checksum)r for %(url)s",
                caused_by=e,
                algorithm=algorithm,
                checksum=expected,
                url=url,
            ) from e
        actual = _hexdigest(fh, algorithm)
        if actual != expected.lower():
            log.debug("%s mismatch for %s (%s != %s)", algorithm, url, actual, expected)
            raise ChecksumMismatchError(url, target_full_path, algorithm, expected, actual)


@contextmanager
def _partial_file(target_full_path: Path):
    """Yield a locked ``.partial`` file; rename it onto the target on success."""
    partial_path = target_full_path.with_name(f"{target_full_path.name}.partial")
    try:
        with partial_path.open(mode="w+b") as partial, lock(partial):
            yield partial
    except BaseException:
        partial_path.unlink(missing_ok=True)
        raise
    os.replace(partial_path, target_full_path)


@contextmanager
def _translate_http_errors(url: str):
    try:
        yield
    except SSLError as e:
        raise MicrocondaSSLError(
            dals(
                """
                Encountered an SSL error. Most likely a certificate verification issue.

                Exception: %(error)s
                """
            ),
            caused_by=e,
            error=e,
        )
    except (ConnectionError, HTTPError, ChunkedEncodingError, Timeout) as e:
        response = getattr(e, "response", None)
        raise MicrocondaHTTPError(
            dals(
                """
                An HTTP error occurred when trying to retrieve this URL.
                HTTP errors are often intermittent, and a simple retry will get you on your way.
                """
            ),
            url,
            getattr(response, "status_code", None),
            getattr(response, "reason", None),
            caused_by=e,
        )
