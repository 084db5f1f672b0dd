# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Data model for conda packages.

A PackageRecord describes a package available from a channel subdir. A
PrefixRecord is the record of a package linked into a prefix, persisted as
``conda-meta/<name>-<version>-<build>.json``.

Records compare and hash on their identity,
``(name, version, build, channel, subdir, fn)``, so a PrefixRecord equals the
PackageRecord it was installed from.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from os.path import basename
from typing import TYPE_CHECKING

from ..base.constants import CONDA_PACKAGE_EXTENSIONS, UNKNOWN_CHANNEL
from ..common.url import join_url
from .version import normalized_version

if TYPE_CHECKING:
    from typing import Any

    from .version import VersionOrder


def _seconds(timestamp: int | float | None) -> float:
    # repodata carries milliseconds, older files seconds
    if not timestamp:
        return 0
    if timestamp > 253402300799:  # 9999-12-31
        return timestamp / 1000
    return timestamp


@dataclass(frozen=True, eq=False)
class PackageRecord:
    name: str
    version: str
    build: str
    build_number: int = 0
    channel: str = UNKNOWN_CHANNEL
    subdir: str = ""
    fn: str = ""
    url: str = ""
    depends: tuple[str, ...] = ()
    constrains: tuple[str, ...] = ()
    size: int = 0
    md5: str | None = None
    sha256: str | None = None
    timestamp: int = 0
    noarch: str | None = None
    license: str | None = None

    def __post_init__(self):
        # frozen dataclass; coerce list inputs from JSON through object.__setattr__
        object.__setattr__(self, "depends", tuple(self.depends or ()))
        object.__setattr__(self, "constrains", tuple(self.constrains or ()))
        if not self.fn:
            object.__setattr__(
                self, "fn", f"{self.name}-{self.version}-{self.build}.tar.bz2"
            )

    @property
    def identity(self) -> tuple[str, str, str, str, str, str]:
        return (self.name, self.version, self.build, self.channel, self.subdir, self.fn)

    def __eq__(self, other):
        if not isinstance(other, PackageRecord):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self):
        return hash(self.identity)

    @property
    def version_order(self) -> VersionOrder:
        return normalized_version(self.version)

    @property
    def dist_name(self) -> str:
        """``name-version-build``; names the extracted directory and the conda-meta file."""
        return f"{self.name}-{self.version}-{self.build}"

    def dist_str(self) -> str:
        return f"{self.channel}/{self.subdir}::{self.dist_name}"

    @property
    def archive_basename(self) -> str:
        for ext in CONDA_PACKAGE_EXTENSIONS:
            if self.fn.endswith(ext):
                return self.fn[: -len(ext)]
        return self.fn

    @property
    def timestamp_seconds(self) -> float:
        return _seconds(self.timestamp)

    def __str__(self) -> str:
        return self.dist_str()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.dist_str()!r})"

    @classmethod
    def from_repodata(
        cls,
        fn: str,
        info: dict[str, Any],
        channel: str,
        subdir: str,
        base_url: str,
    ) -> PackageRecord:
        """Build a record from one ``packages``/``packages.conda`` entry."""
        return cls(
            name=info["name"],
            version=str(info["version"]),
            build=info["build"],
            build_number=int(info.get("build_number") or 0),
            channel=channel,
            subdir=info.get("subdir") or subdir,
            fn=fn,
            url=join_url(base_url, fn),
            depends=info.get("depends") or (),
            constrains=info.get("constrains") or (),
            size=int(info.get("size") or 0),
            md5=info.get("md5"),
            sha256=info.get("sha256"),
            timestamp=int(info.get("timestamp") or 0),
            noarch=_noarch(info.get("noarch")),
            license=info.get("license"),
        )

    def dump(self) -> dict[str, Any]:
        data = asdict(self)
        data["depends"] = list(self.depends)
        data["constrains"] = list(self.constrains)
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PackageRecord:
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "files" in kwargs:
            kwargs["files"] = tuple(kwargs["files"] or ())
        if not kwargs.get("fn") and kwargs.get("url"):
            kwargs["fn"] = basename(kwargs["url"])
        return cls(**kwargs)


def _noarch(value) -> str | None:
    if not value:
        return None
    if value is True:
        return "generic"
    return str(value)


@dataclass(frozen=True, eq=False)
class PrefixRecord(PackageRecord):
    #: Paths relative to the prefix that this package put there.
    files: tuple[str, ...] = ()
    requested_spec: str | None = None
    extracted_package_dir: str | None = None
    link_type: str | None = None

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "files", tuple(self.files or ()))

    @classmethod
    def from_package_record(cls, record: PackageRecord, **kwargs) -> PrefixRecord:
        base = {f.name: getattr(record, f.name) for f in fields(PackageRecord)}
        base.update(kwargs)
        return cls(**base)

    def to_package_record(self) -> PackageRecord:
        return PackageRecord(
            **{f.name: getattr(self, f.name) for f in fields(PackageRecord)}
        )

    def dump(self) -> dict[str, Any]:
        data = super().dump()
        data["files"] = list(self.files)
        return data
