# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Tools for managing a subdir's repodata.json."""

from __future__ import annotations

from collections import defaultdict
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from logging import getLogger
from os.path import join
from pathlib import Path
from typing import TYPE_CHECKING

from .. import MicrocondaError
from ..base.constants import (
    CONDA_PACKAGE_EXTENSION_V1,
    CONDA_PACKAGE_EXTENSION_V2,
    REPODATA_FN,
)
from ..common.url import join_url
from ..exceptions import FetchFailed, FetchFailedMulti
from ..gateways.repodata import RepodataFetch, cache_fn_url
from ..models.match_spec import MatchSpec
from ..models.records import PackageRecord

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from typing import Any

    from ..base.context import Context
    from ..models.channel import Channel

log = getLogger(__name__)

MAX_REPODATA_VERSION = 2


class SubdirData:
    """Package records of one channel subdir, e.g. ``conda-forge/linux-64``.

    :param channel: The channel object
    :param subdir: The platform subdirectory, e.g. ``noarch``
    :param context: Settings for transport and caching
    """

    def __init__(self, channel: Channel, subdir: str, context: Context):
        self.channel = channel
        self.subdir = subdir
        self.context = context
        self.url_w_subdir = channel.subdir_url(subdir)
        self._loaded = False
        self._package_records: list[PackageRecord] = []
        self._names_index: dict[str, list[int]] = defaultdict(list)
        self._state: dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"SubdirData({self.url_w_subdir!r})"

    @property
    def url_w_repodata_fn(self) -> str:
        return join_url(self.url_w_subdir, REPODATA_FN)

    @property
    def cache_path_base(self) -> str:
        return join(
            self.context.repodata_cache_dir,
            cache_fn_url(self.url_w_subdir)[: -len(".json")],
        )

    @property
    def cache_path_json(self) -> Path:
        return Path(self.cache_path_base + ".json")

    @property
    def repo_fetch(self) -> RepodataFetch:
        return RepodataFetch(
            Path(self.cache_path_base), self.url_w_subdir, self.subdir, self.context
        )

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> SubdirData:
        """Fetch (or read from cache) and parse the subdir's repodata.

        Raises FetchFailed when the subdir cannot be retrieved.
        """
        repodata, state = self.repo_fetch.fetch_latest_parsed()
        self._process_raw_repodata(repodata)
        self._state = dict(state)
        self._loaded = True
        log.debug(
            "loaded %d records from %s", len(self._package_records), self.url_w_subdir
        )
        return self

    def reload(self) -> SubdirData:
        self._loaded = False
        return self.load()

    def iter_records(self) -> Iterator[PackageRecord]:
        if not self._loaded:
            self.load()
        return iter(self._package_records)

    def query(self, spec: MatchSpec | str) -> Iterator[PackageRecord]:
        if not self._loaded:
            self.load()
        spec = MatchSpec.parse(spec)
        if "*" in spec.name:
            candidates = self._package_records
        else:
            candidates = (self._package_records[i] for i in self._names_index.get(spec.name, ()))
        for record in candidates:
            if spec.match(record):
                yield record

    def __len__(self) -> int:
        return len(self._package_records)

    def _process_raw_repodata(self, repodata: dict[str, Any]) -> None:
        info = repodata.get("info") or {}
        repodata_version = repodata.get("repodata_version", 1)
        if repodata_version > MAX_REPODATA_VERSION:
            raise FetchFailed(
                self.subdir,
                self.url_w_repodata_fn,
                f"unsupported repodata_version {repodata_version}; "
                f"only versions up to {MAX_REPODATA_VERSION} can be read",
            )

        subdir = info.get("subdir") or self.subdir
        if subdir != self.subdir:
            log.warning(
                "repodata at %s declares subdir %s; expected %s",
                self.url_w_repodata_fn,
                subdir,
                self.subdir,
            )
        base_url = info.get("base_url") or self.url_w_subdir

        legacy_packages = repodata.get("packages") or {}
        conda_packages = repodata.get("packages.conda") or {}

        # .conda artifacts shadow the .tar.bz2 of the same package
        shadowed = {
            fn[: -len(CONDA_PACKAGE_EXTENSION_V2)] + CONDA_PACKAGE_EXTENSION_V1
            for fn in conda_packages
        }
        use_these_legacy_keys = [fn for fn in legacy_packages if fn not in shadowed]

        self._package_records = package_records = []
        self._names_index = names_index = defaultdict(list)
        seen = set()

        for group in (
            conda_packages.items(),
            ((fn, legacy_packages[fn]) for fn in use_these_legacy_keys),
        ):
            for fn, pkg_info in group:
                if pkg_info.get("record_version", 0) > 1:
                    log.debug(
                        "Ignoring record_version %d from %s",
                        pkg_info["record_version"],
                        fn,
                    )
                    continue
                try:
                    record = PackageRecord.from_repodata(
                        fn, pkg_info, self.channel.name, self.subdir, base_url
                    )
                except (KeyError, TypeError, ValueError) as e:
                    log.warning(
                        "Skipping malformed entry %s in %s: %r",
                        fn,
                        self.url_w_repodata_fn,
                        e,
                    )
                    continue
                if record in seen:
                    continue
                seen.add(record)
                package_records.append(record)
                names_index[record.name].append(len(package_records) - 1)


@dataclass
class FetchReport:
    """Outcome of fetching a set of channel subdirs."""

    #: Loaded subdirs in channel priority order.
    succeeded: list[SubdirData] = field(default_factory=list)
    #: Subdir URL -> the error that subdir failed with.
    failed: dict[str, FetchFailed] = field(default_factory=dict)
    #: Subdir URLs never attempted because fail_fast was reached.
    cancelled: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    def raise_for_failures(self) -> None:
        errors = list(self.failed.values())
        if len(errors) == 1:
            raise errors[0]
        elif errors:
            raise FetchFailedMulti(errors)


def make_subdir_datas(
    channels: Iterable[Channel], context: Context
) -> list[SubdirData]:
    return [
        SubdirData(channel, subdir, context)
        for channel in channels
        for subdir in channel.subdirs(context.subdirs)
    ]


def _as_fetch_failed(sd: SubdirData, exc: BaseException) -> FetchFailed:
    if isinstance(exc, FetchFailed):
        return exc
    if isinstance(exc, (MicrocondaError, OSError)):
        return FetchFailed(sd.subdir, sd.url_w_repodata_fn, str(exc), caused_by=exc)
    raise exc


def fetch_subdirs(subdir_datas: Iterable[SubdirData], context: Context) -> FetchReport:
    """Load every subdir concurrently, at most ``context.fetch_threads`` at a time.

    Blocks until every fetch finished, or until ``context.fail_fast`` fetches
    failed, in which case the ones not started yet are cancelled.
    """
    subdir_datas = list(subdir_datas)
    report = FetchReport()
    if not subdir_datas:
        return report

    def collect(done):
        for future in done:
            sd = futures[future]
            if future.cancelled():
                report.cancelled.append(sd.url_w_subdir)
            elif future.exception() is not None:
                error = _as_fetch_failed(sd, future.exception())
                log.info("failed to fetch %s: %s", sd.url_w_subdir, error)
                report.failed[sd.url_w_subdir] = error

    max_workers = min(context.fetch_threads, len(subdir_datas))
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(sd.load): sd for sd in subdir_datas}
        pending = set(futures)
        while pending:
            done, pending = wait(pending, return_when=FIRST_COMPLETED)
            collect(done)
            if context.fail_fast and len(report.failed) >= context.fail_fast and pending:
                log.debug("fail_fast reached; cancelling %d pending fetches", len(pending))
                for future in pending:
                    future.cancel()
                collect(wait(pending).done)
                pending = set()

    report.succeeded = [sd for sd in subdir_datas if sd.loaded]
    return report
