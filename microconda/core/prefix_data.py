# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Tools for managing the packages installed within an environment."""

from __future__ import annotations

import json
import os
from logging import getLogger
from os.path import basename, lexists
from pathlib import Path
from typing import TYPE_CHECKING

from ..base.constants import PREFIX_MAGIC_FILE, PREFIX_META_DIR
from ..common.url import mask_anaconda_token
from ..exceptions import (
    CorruptedPrefix,
    MicrocondaError,
    PrefixAlreadyExists,
    PrefixNotFound,
)
from ..gateways.disk import mkdir_p
from ..gateways.disk.create import write_as_json_to_file
from ..gateways.disk.delete import rm_rf
from ..models.match_spec import MatchSpec
from ..models.records import PackageRecord, PrefixRecord

if TYPE_CHECKING:
    from collections.abc import Iterator

log = getLogger(__name__)


class PrefixData:
    """The installed records of one prefix, stored in ``conda-meta/``.

    Every :meth:`insert` and :meth:`remove` is written to disk immediately.
    """

    def __init__(self, prefix_path: str | os.PathLike):
        self.prefix_path = str(Path(prefix_path).absolute())
        self._prefix_records: dict[str, PrefixRecord] | None = None

    def __repr__(self) -> str:
        return f"PrefixData({self.prefix_path!r})"

    @property
    def _meta_dir(self) -> Path:
        return Path(self.prefix_path, PREFIX_META_DIR)

    @property
    def _magic_file(self) -> Path:
        return Path(self.prefix_path, PREFIX_MAGIC_FILE)

    def exists(self) -> bool:
        """
        Check whether the prefix path exists and is a directory.
        """
        try:
            return Path(self.prefix_path).is_dir()
        except OSError:
            return False

    def is_environment(self) -> bool:
        """
        Check whether the prefix is an environment, i.e. has the
        ``conda-meta/history`` marker file.
        """
        try:
            return self._magic_file.is_file()
        except OSError:
            return False

    def assert_environment(self) -> None:
        """
        :raises PrefixNotFound: If the prefix is missing or not an environment.
        """
        if not self.exists() or not self.is_environment():
            raise PrefixNotFound(self.prefix_path)

    def assert_absent(self) -> None:
        """
        :raises PrefixAlreadyExists: If anything is already at the prefix path.
        """
        if lexists(self.prefix_path):
            raise PrefixAlreadyExists(self.prefix_path)

    def create(self) -> None:
        """Make ``conda-meta/`` and its history marker."""
        mkdir_p(self._meta_dir)
        if not self._magic_file.exists():
            self._magic_file.touch()
        log.debug("created environment %s", self.prefix_path)

    def load(self) -> None:
        self._prefix_records = {}
        if lexists(self._meta_dir):
            meta_json_paths = sorted(
                entry.path
                for entry in os.scandir(self._meta_dir)
                if entry.name.endswith(".json") and entry.is_file()
            )
            for meta_file in meta_json_paths:
                self._load_single_record(meta_file)

    def reload(self) -> PrefixData:
        self.load()
        return self

    @property
    def records(self) -> dict[str, PrefixRecord]:
        if self._prefix_records is None:
            self.load()
        return self._prefix_records

    def _get_json_fn(self, prefix_record: PackageRecord) -> str:
        return prefix_record.dist_name + ".json"

    def _load_single_record(self, prefix_record_json_path: str) -> None:
        log.debug("loading prefix record %s", prefix_record_json_path)
        with open(prefix_record_json_path, "rb") as fh:
            try:
                json_data = json.loads(fh.read().decode("utf-8"))
            except (UnicodeDecodeError, ValueError) as e:
                # ValueError covers json.JSONDecodeError
                raise CorruptedPrefix(self.prefix_path, prefix_record_json_path, caused_by=e)
        if not isinstance(json_data, dict):
            raise CorruptedPrefix(self.prefix_path, prefix_record_json_path)

        try:
            prefix_record = PrefixRecord.from_dict(json_data)
        except (TypeError, ValueError) as e:
            raise CorruptedPrefix(self.prefix_path, prefix_record_json_path, caused_by=e)

        # the file name must be name-version-build
        try:
            n, v, b = basename(prefix_record_json_path)[:-5].rsplit("-", 2)
            if (n, v, b) != (prefix_record.name, prefix_record.version, prefix_record.build):
                raise ValueError()
        except ValueError:
            log.warning("Ignoring malformed prefix record at: %s", prefix_record_json_path)
            return

        self._prefix_records[prefix_record.name] = prefix_record

    def insert(self, prefix_record: PrefixRecord) -> None:
        if prefix_record.name in self.records:
            raise MicrocondaError(
                "Prefix record '%(name)s' already exists in %(prefix)s.",
                name=prefix_record.name,
                prefix=self.prefix_path,
            )

        mkdir_p(self._meta_dir)
        prefix_record_json_path = self._meta_dir / self._get_json_fn(prefix_record)
        if lexists(prefix_record_json_path):
            log.info("replacing stale prefix record %s", prefix_record_json_path)
            rm_rf(prefix_record_json_path)
        prefix_record_json = prefix_record.dump()
        prefix_record_json["url"] = mask_anaconda_token(prefix_record.url)
        write_as_json_to_file(str(prefix_record_json_path), prefix_record_json)

        self.records[prefix_record.name] = prefix_record

    def remove(self, package_name: str) -> None:
        prefix_record = self.records[package_name]
        prefix_record_json_path = self._meta_dir / self._get_json_fn(prefix_record)
        rm_rf(prefix_record_json_path)
        del self.records[package_name]

    def get(self, package_name: str, default=None) -> PrefixRecord | None:
        return self.records.get(package_name, default)

    def __contains__(self, package_name: str) -> bool:
        return package_name in self.records

    def __len__(self) -> int:
        return len(self.records)

    def iter_records(self) -> Iterator[PrefixRecord]:
        return iter(self.records.values())

    def iter_records_sorted(self) -> Iterator[PrefixRecord]:
        return iter(sorted(self.records.values(), key=lambda r: r.name))

    def query(self, spec: MatchSpec | str) -> Iterator[PrefixRecord]:
        spec = MatchSpec.parse(spec)
        return (prefix_rec for prefix_rec in self.iter_records() if spec.match(prefix_rec))

    def owners(self) -> dict[str, str]:
        """Map each installed relative path to the name of the package owning it."""
        return {
            path: record.name for record in self.iter_records() for path in record.files
        }
