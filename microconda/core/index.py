# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""The package index: every candidate record, grouped into prioritized repos.

A :class:`Pool` owns its :class:`Repo` objects in a list and hands out the
list position as an integer handle. Records are deduplicated on their
identity, the first repo to contribute a record keeps it. Once frozen the
pool is read-only and may be shared by the solver and the transaction.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from ..base.constants import INSTALLED_PRIORITY
from ..exceptions import MicrocondaError
from ..models.match_spec import MatchSpec

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from ..models.records import PackageRecord
    from .prefix_data import PrefixData
    from .subdir_data import SubdirData

log = getLogger(__name__)


@dataclass
class Repo:
    """Records from exactly one source: an installed prefix or a channel subdir."""

    name: str
    priority: int
    subpriority: int = 0
    url: str | None = None
    installed: bool = False
    records: list[PackageRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[PackageRecord]:
        return iter(self.records)


class Pool:
    def __init__(self):
        self._repos: list[Repo] = []
        self._handles: dict[tuple, int] = {}
        self._records: dict[tuple, PackageRecord] = {}
        self._by_name: dict[str, list[PackageRecord]] = defaultdict(list)
        self._installed_handle: int | None = None
        self._frozen = False

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record: PackageRecord) -> bool:
        return record.identity in self._records

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> Pool:
        self._frozen = True
        return self

    def add_repo(
        self,
        name: str,
        records: Iterable[PackageRecord],
        priority: int,
        subpriority: int = 0,
        url: str | None = None,
        installed: bool = False,
    ) -> int:
        """Add a repo and return its handle."""
        if self._frozen:
            raise MicrocondaError("Cannot add repo %(name)s to a frozen pool.", name=name)
        if installed and self._installed_handle is not None:
            raise MicrocondaError("Pool already has an installed repo.")

        handle = len(self._repos)
        repo = Repo(name, priority, subpriority, url, installed)
        self._repos.append(repo)
        duplicates = 0
        for record in records:
            key = record.identity
            if key in self._records:
                duplicates += 1
                continue
            self._records[key] = record
            self._handles[key] = handle
            self._by_name[record.name].append(record)
            repo.records.append(record)
        if installed:
            self._installed_handle = handle
        log.debug(
            "added repo %s (priority %d/%d) with %d records, %d duplicates dropped",
            name,
            priority,
            subpriority,
            len(repo),
            duplicates,
        )
        return handle

    def add_installed(self, prefix_data: PrefixData) -> int:
        return self.add_repo(
            "installed",
            prefix_data.iter_records(),
            INSTALLED_PRIORITY,
            url=prefix_data.prefix_path,
            installed=True,
        )

    def repo(self, handle: int) -> Repo:
        return self._repos[handle]

    @property
    def repos(self) -> tuple[Repo, ...]:
        return tuple(self._repos)

    @property
    def installed_repo(self) -> Repo | None:
        if self._installed_handle is None:
            return None
        return self._repos[self._installed_handle]

    def repo_of(self, record: PackageRecord) -> Repo:
        return self._repos[self._handles[record.identity]]

    def is_installed(self, record: PackageRecord) -> bool:
        handle = self._handles.get(record.identity)
        return handle is not None and handle == self._installed_handle

    def find_record(self, identity: tuple) -> PackageRecord | None:
        return self._records.get(tuple(identity))

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._by_name)

    def records_by_name(self, name: str) -> tuple[PackageRecord, ...]:
        return tuple(self._by_name.get(name, ()))

    def sort_key(self, record: PackageRecord) -> tuple:
        repo = self.repo_of(record)
        return (
            repo.priority,
            record.version_order,
            record.build_number,
            repo.subpriority,
            record.timestamp_seconds,
        )

    def select(self, spec: MatchSpec | str) -> list[PackageRecord]:
        """Matching records, best first.

        Best means highest repo priority, then version, build number and
        subdir priority.
        """
        spec = MatchSpec.parse(spec)
        if "*" in spec.name:
            candidates = self._records.values()
        else:
            candidates = self._by_name.get(spec.name, ())
        matches = [record for record in candidates if spec.match(record)]
        matches.sort(key=self.sort_key, reverse=True)
        return matches

    def iter_records(self) -> Iterator[PackageRecord]:
        return iter(self._records.values())

    @classmethod
    def from_subdirs(
        cls,
        subdir_datas: Iterable[SubdirData],
        prefix_data: PrefixData | None = None,
    ) -> Pool:
        """Build and freeze a pool from loaded subdirs and an optional prefix.

        Channels rank by their position in the channel list, and within a
        channel the platform subdir ranks above noarch.
        """
        pool = cls()
        if prefix_data is not None:
            pool.add_installed(prefix_data)

        subdir_datas = list(subdir_datas)
        positions = sorted({sd.channel.position for sd in subdir_datas})
        n_channels = len(positions)
        by_channel = defaultdict(list)
        for sd in subdir_datas:
            by_channel[sd.channel.position].append(sd)

        for rank, position in enumerate(positions):
            subdirs = by_channel[position]
            for sub_rank, sd in enumerate(subdirs):
                pool.add_repo(
                    f"{sd.channel.name}/{sd.subdir}",
                    sd.iter_records(),
                    priority=n_channels - rank,
                    subpriority=len(subdirs) - sub_rank,
                    url=sd.url_w_subdir,
                )
        return pool.freeze()
