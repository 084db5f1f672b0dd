# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Fetch ``repodata.json`` and keep it cached on disk.

Each cached document ``<cache>/<hash>.json`` has a state file
``<cache>/<hash>.info.json`` holding the HTTP validators (etag,
last-modified, cache-control) and the size and mtime of the cached file, so
a cache that was replaced behind our back is not revalidated.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import pathlib
import re
import time
import warnings
from collections import UserDict
from contextlib import contextmanager
from typing import TYPE_CHECKING

from ... import MicrocondaError
from ...base.constants import (
    CACHE_CONTROL_KEY,
    CACHE_STATE_SUFFIX,
    ETAG_KEY,
    LAST_MODIFIED_KEY,
    REPODATA_FN,
    URL_KEY,
)
from ...common.url import join_url, maybe_unquote
from ...exceptions import FetchFailed
from ..connection import (
    ChunkedEncodingError,
    ConnectionError,
    HTTPError,
    InsecureRequestWarning,
    SSLError,
)
from ..connection.session import get_session
from ..disk import mkdir_p
from ..disk.lock import lock

if TYPE_CHECKING:
    from pathlib import Path
    from typing import Any

    from ...base.context import Context
    from ..connection import Response

log = logging.getLogger(__name__)

# response header -> state key
_VALIDATOR_HEADERS = (
    ("Etag", ETAG_KEY),
    ("Last-Modified", LAST_MODIFIED_KEY),
    ("Cache-Control", CACHE_CONTROL_KEY),
)


class Response304ContentUnchanged(Exception):
    pass


@contextmanager
def fetch_failed_on_http_errors(url: str, subdir: str):
    """Translate requests exceptions into FetchFailed for one subdir."""
    repodata_url = join_url(url, REPODATA_FN)
    try:
        yield
    except SSLError as e:
        raise FetchFailed(
            subdir,
            repodata_url,
            f"SSL error, most likely a certificate verification issue: {e}",
            caused_by=e,
        )
    except (ConnectionError, HTTPError, ChunkedEncodingError) as e:
        status_code = getattr(e.response, "status_code", None)
        if status_code in (403, 404):
            log.info(
                "Unable to retrieve repodata (response: %d) for %s",
                status_code,
                repodata_url,
            )
            reason = f"{status_code} {getattr(e.response, 'reason', '')}".strip()
        elif status_code is not None and 500 <= status_code < 600:
            reason = f"remote server error {status_code}, retries exhausted"
        elif status_code is not None:
            reason = f"HTTP {status_code} {getattr(e.response, 'reason', '')}".strip()
        else:
            reason = f"connection failed: {maybe_unquote(str(e))}"
        raise FetchFailed(
            subdir, repodata_url, reason, status_code=status_code, caused_by=e
        )


class RepoInterface:
    """Retrieves ``repodata.json`` for one subdir URL."""

    def __init__(self, url: str, subdir: str, context: Context) -> None:
        self._url = url
        self._subdir = subdir
        self._context = context

    def repodata(self, state: RepodataState) -> str:
        """
        Return repodata.json as a str, raising Response304ContentUnchanged when
        the cached copy described by ``state`` is still current. Updates
        ``state`` with the response validators.
        """
        if not self._context.ssl_verify:
            warnings.simplefilter("ignore", InsecureRequestWarning)

        session = get_session(self._context)

        headers = {}
        if state.etag:
            headers["If-None-Match"] = str(state.etag)
        if state.mod:
            headers["If-Modified-Since"] = str(state.mod)

        url = join_url(self._url, REPODATA_FN)

        with fetch_failed_on_http_errors(self._url, self._subdir):
            response: Response = session.get(
                url, headers=headers, timeout=self._context.remote_timeout
            )
            log.debug("GET %s -> %s", url, response.status_code)
            response.raise_for_status()

        if response.status_code == 304:
            raise Response304ContentUnchanged()

        try:
            json_str = response.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FetchFailed(self._subdir, url, f"invalid UTF-8 in repodata: {e}", caused_by=e)

        state.clear()
        state[URL_KEY] = self._url
        for header, key in _VALIDATOR_HEADERS:
            if response.headers.get(header):
                state[key] = response.headers[header]

        return json_str


class RepodataState(UserDict):
    """State file that accompanies a cached ``repodata.json``."""

    # Enforce string type on these keys
    _strings = {LAST_MODIFIED_KEY, ETAG_KEY, CACHE_CONTROL_KEY, URL_KEY}

    @property
    def mod(self) -> str:
        """Last-Modified header or ""."""
        return self.get(LAST_MODIFIED_KEY) or ""

    @property
    def etag(self) -> str:
        return self.get(ETAG_KEY) or ""

    @property
    def cache_control(self) -> str:
        return self.get(CACHE_CONTROL_KEY) or ""

    def __setitem__(self, key: str, item: Any) -> None:
        if key in self._strings and not isinstance(item, str):
            log.warning('Replaced non-str RepodataState[%s] with ""', key)
            item = ""
        return super().__setitem__(key, item)


class RepodataCache:
    """
    The on-disk copy of one subdir's ``repodata.json`` and its state file.

    ``base`` is the directory plus filename stem, e.g. ``<cache>/abc123``,
    giving ``<cache>/abc123.json`` and ``<cache>/abc123.info.json``. Every
    read or write of the state file holds a lock on it.
    """

    def __init__(self, base: str | os.PathLike, local_repodata_ttl: int = 1):
        base = pathlib.Path(base)
        self.cache_dir = base.parent
        self.name = base.name
        self.local_repodata_ttl = local_repodata_ttl
        self.state = RepodataState()

    @property
    def cache_path_json(self) -> Path:
        return self.cache_dir / f"{self.name}.json"

    @property
    def cache_path_state(self) -> Path:
        return self.cache_dir / f"{self.name}{CACHE_STATE_SUFFIX}"

    @contextmanager
    def _locked_state(self):
        mkdir_p(self.cache_dir)
        # "a+" creates the file without truncating it before the lock is held
        with self.cache_path_state.open("a+") as state_file, lock(state_file):
            state_file.seek(0)
            yield state_file

    def _write_state(self, state_file) -> None:
        state_file.seek(0)
        state_file.truncate()
        state_file.write(json.dumps(dict(self.state), indent=2))

    def load(self, *, state_only: bool = False) -> str:
        """Read the state and, unless ``state_only``, the cached repodata text.

        Validators are dropped when the json file no longer has the size and
        mtime recorded in the state, forcing a full download next time.

        :raises FileNotFoundError: When there is no cached repodata.
        """
        with self._locked_state() as state_file:
            text = state_file.read()
            try:
                state = json.loads(text) if text.strip() else {}
            except ValueError:
                log.debug("Ignoring unreadable state %s", self.cache_path_state, exc_info=True)
                state = {}

            json_data = "" if state_only else self.cache_path_json.read_text(encoding="utf-8")
            stat = self.cache_path_json.stat()
            if (state.get("mtime_ns"), state.get("size")) != (stat.st_mtime_ns, stat.st_size):
                state.update({ETAG_KEY: "", LAST_MODIFIED_KEY: "", CACHE_CONTROL_KEY: ""})
                state["size"] = 0
            self.state.clear()
            self.state.update(state)
        return json_data

    def load_state(self) -> RepodataState:
        try:
            self.load(state_only=True)
        except FileNotFoundError:
            self.state.clear()
        return self.state

    def save(self, data: str) -> None:
        """Atomically replace the cached json with ``data`` and record its state."""
        mkdir_p(self.cache_dir)
        temp_path = self.cache_dir / f"{self.name}.{os.urandom(2).hex()}.tmp"
        try:
            temp_path.write_text(data, encoding="utf-8")
            # same directory, so the rename is atomic and keeps the mtime
            with self._locked_state() as state_file:
                stat = temp_path.stat()
                self.state["mtime_ns"] = stat.st_mtime_ns
                self.state["size"] = stat.st_size
                self.state["refresh_ns"] = time.time_ns()
                os.replace(temp_path, self.cache_path_json)
                self._write_state(state_file)
        finally:
            temp_path.unlink(missing_ok=True)

    def refresh(self, refresh_ns: int = 0) -> None:
        """Record that the server confirmed the cached copy (HTTP 304)."""
        with self._locked_state() as state_file:
            self.state["refresh_ns"] = refresh_ns or time.time_ns()
            self._write_state(state_file)

    def _max_age(self) -> int:
        # ttl 0: always stale; 1: honour Cache-Control; >1: fixed seconds
        if self.local_repodata_ttl > 1:
            return self.local_repodata_ttl
        if self.local_repodata_ttl == 1:
            return get_cache_control_max_age(self.state.cache_control)
        return 0

    def timeout(self) -> float:
        """Seconds until the cached copy goes stale; <= 0 once it has."""
        age_ns = time.time_ns() - self.state.get("refresh_ns", 0)
        return (self._max_age() * 10**9 - age_ns) / 1e9

    def stale(self) -> bool:
        return self.timeout() < 0


class RepodataFetch:
    """
    Combine RepodataCache and RepoInterface to give SubdirData the current
    repodata for one channel subdir URL.
    """

    def __init__(self, cache_path_base: Path, url: str, subdir: str, context: Context):
        self.cache_path_base = cache_path_base
        self.url = url
        self.subdir = subdir
        self.context = context

    @property
    def url_w_repodata_fn(self) -> str:
        return join_url(self.url, REPODATA_FN)

    @property
    def repo_cache(self) -> RepodataCache:
        return RepodataCache(self.cache_path_base, self.context.local_repodata_ttl)

    @property
    def cache_path_json(self) -> Path:
        return self.repo_cache.cache_path_json

    def fetch_latest_parsed(self) -> tuple[dict, RepodataState]:
        """
        Retrieve parsed latest or latest-cached repodata as a dict; update
        cache.
        """
        raw, state = self.fetch_latest()
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            raise FetchFailed(
                self.subdir, self.url_w_repodata_fn, f"invalid JSON: {e}", caused_by=e
            )
        if not isinstance(parsed, dict):
            raise FetchFailed(
                self.subdir, self.url_w_repodata_fn, "repodata is not a JSON object"
            )
        return parsed, state

    def fetch_latest(self) -> tuple[str, RepodataState]:
        """
        Return up-to-date repodata and cache information. Fetch repodata from
        remote if cache has expired; return cached data if cache has not
        expired or when offline.
        """
        cache = self.repo_cache
        cache.load_state()
        is_local = self.url.startswith("file://")

        if not cache.cache_path_json.exists():
            log.debug(
                "No local cache found for %s at %s",
                self.url_w_repodata_fn,
                cache.cache_path_json,
            )
            if self.context.offline and not is_local:
                if self.context.offline_skip_missing:
                    log.info(
                        "Offline and no cache for %s; treating it as empty",
                        self.url_w_repodata_fn,
                    )
                    return "{}", cache.state
                raise FetchFailed(
                    self.subdir,
                    self.url_w_repodata_fn,
                    "offline mode and no cached copy available",
                )
        else:
            stale = cache.stale()
            if (not stale or self.context.offline) and not is_local:
                log.debug(
                    "Using cached repodata for %s at %s. Timeout in %d sec",
                    self.url_w_repodata_fn,
                    cache.cache_path_json,
                    cache.timeout(),
                )
                return self.read_cache()

            log.debug(
                "Local cache timed out for %s at %s",
                self.url_w_repodata_fn,
                cache.cache_path_json,
            )

        try:
            raw_repodata = RepoInterface(self.url, self.subdir, self.context).repodata(
                cache.state
            )
        except Response304ContentUnchanged:
            log.debug(
                "304 NOT MODIFIED for '%s'. Updating mtime and loading from disk",
                self.url_w_repodata_fn,
            )
            cache.refresh()
            return self.read_cache()

        cache.save(raw_repodata)
        return raw_repodata, cache.state

    def read_cache(self) -> tuple[str, RepodataState]:
        """
        Read repodata from disk, without trying to fetch a fresh version.
        """
        log.debug(
            "Loading raw json for %s at %s",
            self.url_w_repodata_fn,
            self.cache_path_json,
        )

        cache = self.repo_cache
        try:
            raw_repodata_str = cache.load()
        except UnicodeDecodeError as e:
            raise FetchFailed(
                self.subdir,
                self.url_w_repodata_fn,
                f"invalid UTF-8 in cached repodata {self.cache_path_json}: {e}",
                caused_by=e,
            )
        except OSError as e:
            log.debug("Error for cache path: '%s'\n%r", self.cache_path_json, e)
            raise MicrocondaError(
                "An error occurred when loading cached repodata %(path)s.",
                caused_by=e,
                path=str(self.cache_path_json),
            )
        return raw_repodata_str, cache.state


def cache_fn_url(url: str) -> str:
    # url must be right-padded with '/' to not invalidate any existing caches
    if not url.endswith("/"):
        url += "/"
    digest = hashlib.md5(url.encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"{digest[:8]}.json"


def get_cache_control_max_age(cache_control_value: str) -> int:
    max_age = re.search(r"max-age=(\d+)", cache_control_value)
    return int(max_age.groups()[0]) if max_age else 0
