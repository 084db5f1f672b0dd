# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Adapter mounted for remote schemes when running offline."""

from __future__ import annotations

from ....exceptions import OfflineError
from .. import BaseAdapter


class EnforceUnusedAdapter(BaseAdapter):
    def send(self, request, *args, **kwargs):
        raise OfflineError(
            "EnforceUnusedAdapter called with url %(url)s.\n"
            "This command is using a remote connection in offline mode.",
            url=request.url,
        )

    def close(self):
        pass  # pragma: no cover
