# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Tools for managing the package cache (previously downloaded packages).

A cache entry is a package archive ``<pkgs_dir>/<fn>`` and its extracted
directory ``<pkgs_dir>/<name>-<version>-<build>/``. The extracted directory
is valid when its ``info/repodata_record.json`` describes the same record.
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from logging import getLogger
from os.path import isdir, isfile, join
from typing import TYPE_CHECKING
from uuid import uuid4

from ..base.constants import CONDA_TEMP_EXTENSION, REPODATA_RECORD_PATH
from ..exceptions import MicrocondaError
from ..gateways.connection.download import download
from ..gateways.disk import mkdir_p
from ..gateways.disk.create import extract_tarball, write_as_json_to_file
from ..gateways.disk.delete import rm_rf
from ..gateways.disk.lock import lock_path
from ..gateways.disk.read import compute_sum, read_files, read_repodata_json
from ..reporters import get_progress_bar

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..base.context import Context
    from ..models.records import PackageRecord

log = getLogger(__name__)


def _record_matches(record: PackageRecord, repodata_record: dict | None) -> bool:
    if not repodata_record:
        return False
    if record.sha256 and repodata_record.get("sha256"):
        return record.sha256 == repodata_record["sha256"]
    if record.md5 and repodata_record.get("md5"):
        return record.md5 == repodata_record["md5"]
    return (
        record.fn == repodata_record.get("fn")
        and record.url == repodata_record.get("url", record.url)
    )


class PackageCacheData:
    """One package cache root, e.g. ``<root_prefix>/pkgs``."""

    def __init__(self, pkgs_dir: str):
        self.pkgs_dir = pkgs_dir
        self._is_writable = None

    def __repr__(self) -> str:
        return f"PackageCacheData(pkgs_dir={self.pkgs_dir!r})"

    @property
    def is_writable(self) -> bool:
        if self._is_writable is None:
            self._is_writable = self._check_writable()
        return self._is_writable

    def _check_writable(self) -> bool:
        try:
            mkdir_p(self.pkgs_dir)
        except OSError as e:
            log.debug("package cache %s not creatable: %r", self.pkgs_dir, e)
            return False
        return os.access(self.pkgs_dir, os.W_OK)

    def tarball_path(self, record: PackageRecord) -> str:
        return join(self.pkgs_dir, record.fn)

    def extracted_path(self, record: PackageRecord) -> str:
        return join(self.pkgs_dir, record.dist_name)

    def lock_file_path(self, record: PackageRecord) -> str:
        return join(self.pkgs_dir, record.dist_name + ".lock")

    def get_extracted(self, record: PackageRecord) -> str | None:
        """The extracted directory for ``record`` if it is valid, else None."""
        extracted = self.extracted_path(record)
        if not isdir(extracted):
            return None
        if _record_matches(record, read_repodata_json(extracted)):
            return extracted
        log.debug("stale extracted package %s", extracted)
        return None

    def tarball_is_valid(self, record: PackageRecord, verify: bool = True) -> bool:
        """Whether the archive is present, with matching checksum if ``verify``."""
        path = self.tarball_path(record)
        if not isfile(path):
            return False
        if record.size and os.path.getsize(path) != record.size:
            return False
        if not verify:
            return True
        if record.sha256:
            return compute_sum(path, "sha256") == record.sha256
        if record.md5:
            return compute_sum(path, "md5") == record.md5
        return True


class _EntryLock:
    """A lock plus the number of threads holding or waiting for it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class MultiPackageCache:
    """All configured cache roots; reads in order, writes to the first writable.

    ``fetch_count`` and ``extract_count`` count the downloads and extractions
    this object performed.
    """

    # shared across instances, fcntl locks do not exclude threads of one process;
    # an entry is dropped once nobody holds or waits for it
    _entry_locks: dict[tuple[str, str], _EntryLock] = {}
    _entry_locks_guard = threading.Lock()

    def __init__(self, context: Context, pkgs_dirs: Iterable[str] | None = None):
        self.context = context
        self.caches = tuple(
            PackageCacheData(pkgs_dir) for pkgs_dir in (pkgs_dirs or context.pkgs_dirs)
        )
        self.fetch_count = 0
        self.extract_count = 0
        self._counter_lock = threading.Lock()

    def first_writable(self) -> PackageCacheData:
        for cache in self.caches:
            if cache.is_writable:
                return cache
        raise MicrocondaError(
            "No writable package cache directories found in\n%(pkgs_dirs)s",
            pkgs_dirs="\n".join(f"  - {cache.pkgs_dir}" for cache in self.caches),
        )

    def query_extracted(self, record: PackageRecord) -> str | None:
        for cache in self.caches:
            extracted = cache.get_extracted(record)
            if extracted:
                return extracted
        return None

    def _valid_tarball_cache(
        self, record: PackageRecord, verify: bool = True
    ) -> PackageCacheData | None:
        for cache in self.caches:
            if cache.tarball_is_valid(record, verify=verify):
                return cache
        return None

    def download_size(self, record: PackageRecord) -> int:
        """Bytes to download for ``record``; 0 when the cache already has it."""
        if self.query_extracted(record):
            return 0
        if self._valid_tarball_cache(record, verify=False):
            return 0
        return record.size or 0

    def disk_size(self, record: PackageRecord) -> int:
        """Bytes ``record`` takes up once linked into a prefix.

        Summed over the package's files when the cache holds an extracted
        copy, otherwise estimated by the archive size.
        """
        extracted = self.query_extracted(record)
        if not extracted:
            return record.size or 0
        total = 0
        for short_path in read_files(extracted):
            try:
                total += os.lstat(join(extracted, short_path)).st_size
            except FileNotFoundError:
                log.debug("%s lists missing file %s", extracted, short_path)
        return total

    @classmethod
    @contextmanager
    def _entry_lock(cls, record: PackageRecord):
        key = (record.fn, record.sha256 or record.md5 or record.url)
        with cls._entry_locks_guard:
            entry = cls._entry_locks.setdefault(key, _EntryLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with cls._entry_locks_guard:
                entry.users -= 1
                if not entry.users:
                    del cls._entry_locks[key]

    def _count(self, counter: str) -> None:
        with self._counter_lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def ensure_extracted(
        self, record: PackageRecord, progress_update_callback=None
    ) -> str:
        """Return a valid extracted directory for ``record``.

        Downloads and extracts only what is missing. Raises
        :class:`CacheCorruption` if the archive keeps failing verification.
        """
        with self._entry_lock(record):
            extracted = self.query_extracted(record)
            if extracted:
                log.debug("cache hit for %s at %s", record.dist_str(), extracted)
                return extracted

            target = self.first_writable()
            with lock_path(target.lock_file_path(record)):
                # another process may have finished while we waited
                extracted = target.get_extracted(record)
                if extracted:
                    return extracted

                source = self._valid_tarball_cache(record)
                if source is None:
                    self._fetch(record, target, progress_update_callback)
                    source = target
                return self._extract(record, source, target)

    def _fetch(self, record: PackageRecord, target: PackageCacheData, callback) -> None:
        if not record.url:
            raise MicrocondaError(
                "Record %(dist)s has no url to download from.", dist=record.dist_str()
            )
        tarball = target.tarball_path(record)
        rm_rf(tarball)
        log.info("downloading %s", record.url)
        download(
            record.url,
            tarball,
            self.context,
            md5=record.md5,
            sha256=record.sha256,
            size=record.size or None,
            progress_update_callback=callback,
        )
        self._count("fetch_count")

    def _extract(
        self, record: PackageRecord, source: PackageCacheData, target: PackageCacheData
    ) -> str:
        extracted = target.extracted_path(record)
        temp_dir = f"{extracted}.{uuid4().hex[:8]}{CONDA_TEMP_EXTENSION}"
        try:
            extract_tarball(source.tarball_path(record), temp_dir)
            write_as_json_to_file(join(temp_dir, REPODATA_RECORD_PATH), record.dump())
            rm_rf(extracted)
            os.rename(temp_dir, extracted)
        except BaseException:
            rm_rf(temp_dir)
            raise
        self._count("extract_count")
        log.debug("extracted %s to %s", record.dist_str(), extracted)
        return extracted

    def ensure_all(self, records: Iterable[PackageRecord]) -> dict[PackageRecord, str]:
        """Ensure every record is extracted, ``extract_threads`` at a time.

        Returns a mapping of record to extracted directory. The first error
        raised by any entry propagates once every started entry finished.
        """
        records = list(records)
        if not records:
            return {}

        progress_bars = {
            record: get_progress_bar(record.dist_name, self.context)
            for record in records
        }
        try:
            max_workers = min(self.context.extract_threads, len(records))
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = {
                    record: executor.submit(
                        self.ensure_extracted, record, progress_bars[record].update_to
                    )
                    for record in records
                }
            result = {}
            for record, future in futures.items():
                result[record] = future.result()
                progress_bars[record].update_to(1.0)
            return result
        finally:
            for progress_bar in progress_bars.values():
                progress_bar.close()
