# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Requests session configured with all accepted scheme adapters."""

from __future__ import annotations

from logging import getLogger
from threading import local
from typing import TYPE_CHECKING

import requests

from ... import __version__
from ...base.constants import RETRY_STATUS_FORCELIST
from . import HTTPAdapter, Retry, Session
from .adapters.localfs import LocalFSAdapter
from .adapters.offline import EnforceUnusedAdapter

if TYPE_CHECKING:
    from ...base.context import Context

log = getLogger(__name__)


def session_key(context: Context) -> tuple:
    return (
        context.offline,
        context.ssl_verify,
        context.remote_max_retries,
        context.remote_backoff_factor,
    )


def build_retry(context: Context) -> Retry:
    """Bounded retries with exponential backoff for transient failures only.

    Connection and read errors and the statuses in RETRY_STATUS_FORCELIST are
    retried. Other errors, including TLS failures, are not; any other 4xx is
    returned to the caller unchanged.
    """
    retries = context.remote_max_retries
    return Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        other=0,
        backoff_factor=context.remote_backoff_factor,
        status_forcelist=RETRY_STATUS_FORCELIST,
        raise_on_status=False,
        respect_retry_after_header=False,
    )


class MicrocondaSessionType(type):
    """
    Takes advice from https://github.com/requests/requests/issues/1871#issuecomment-33327847
    and creates one Session instance per thread and per transport configuration.
    """

    def __new__(mcs, name, bases, dct):
        dct["_thread_local"] = local()
        return super().__new__(mcs, name, bases, dct)

    def __call__(cls, context: Context):
        key = session_key(context)
        try:
            return cls._thread_local.sessions[key]
        except AttributeError:
            session = super().__call__(context)
            cls._thread_local.sessions = {key: session}
        except KeyError:
            session = cls._thread_local.sessions[key] = super().__call__(context)
        return session


class MicrocondaSession(Session, metaclass=MicrocondaSessionType):
    def __init__(self, context: Context):
        super().__init__()

        self.verify = context.ssl_verify

        if context.offline:
            unused_adapter = EnforceUnusedAdapter()
            self.mount("http://", unused_adapter)
            self.mount("https://", unused_adapter)
        else:
            http_adapter = HTTPAdapter(max_retries=build_retry(context))
            self.mount("http://", http_adapter)
            self.mount("https://", http_adapter)

        self.mount("file://", LocalFSAdapter())

        self.headers["User-Agent"] = (
            f"microconda/{__version__} requests/{requests.__version__}"
        )

    @classmethod
    def cache_clear(cls):
        try:
            cls._thread_local.sessions.clear()
        except AttributeError:
            # thread's session cache has not been initialized
            pass


def get_session(context: Context) -> MicrocondaSession:
    return MicrocondaSession(context)
