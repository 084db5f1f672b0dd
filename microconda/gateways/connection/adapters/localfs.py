# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Serve ``file://`` URLs through requests."""

from __future__ import annotations

import json
import os
from email.utils import formatdate
from io import BytesIO
from logging import getLogger
from mimetypes import guess_type

from ....common.url import url_to_path
from .. import BaseAdapter, CaseInsensitiveDict, Response

log = getLogger(__name__)


def _response(request, status_code: int, reason: str, raw, headers=None) -> Response:
    resp = Response()
    resp.status_code = status_code
    resp.reason = reason
    resp.url = request.url
    resp.request = request
    resp.headers = CaseInsensitiveDict(headers or {})
    resp.raw = raw
    resp.close = raw.close
    return resp


class LocalFSAdapter(BaseAdapter):
    """Answers GET requests from the local filesystem.

    Missing files (and directories) are a 404. Conditional request headers
    are ignored, so local channels are always read fresh.
    """

    def send(self, request, stream=None, timeout=None, verify=None, cert=None, proxies=None):
        pathname = url_to_path(request.url)
        if not os.path.isfile(pathname):
            log.debug("file not found: %s", pathname)
            body = json.dumps({"error": "file does not exist", "path": pathname}).encode()
            return _response(
                request,
                404,
                "Not Found",
                BytesIO(body),
                {"Content-Type": "application/json", "Content-Length": str(len(body))},
            )

        stats = os.stat(pathname)
        return _response(
            request,
            200,
            "OK",
            open(pathname, "rb"),
            {
                "Content-Type": guess_type(pathname)[0] or "text/plain",
                "Content-Length": str(stats.st_size),
                "Last-Modified": formatdate(stats.st_mtime, usegmt=True),
            },
        )

    def close(self):
        pass
