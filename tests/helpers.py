# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Build local channels out of real (tiny) package archives."""

from __future__ import annotations

import hashlib
import io
import json
import tarfile
from pathlib import Path
from typing import TYPE_CHECKING

from microconda.base.constants import PREFIX_PLACEHOLDER

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from typing import Any

SUBDIR = "linux-64"


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))


def make_package(
    directory: str | Path,
    name: str,
    version: str,
    build: str = "0",
    build_number: int = 0,
    depends: Iterable[str] = (),
    constrains: Iterable[str] = (),
    files: Mapping[str, str] | None = None,
    has_prefix: Iterable[str] = (),
    subdir: str = SUBDIR,
) -> tuple[str, dict[str, Any]]:
    """Write ``<name>-<version>-<build>.tar.bz2`` and return (fn, repodata entry).

    Unless given, the package holds a single file
    ``share/<name>/<version>.txt``. Paths in ``has_prefix`` are listed in
    ``info/has_prefix`` with the default text placeholder.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    if files is None:
        files = {f"share/{name}/{version}.txt": f"{name} {version}\n"}
    index = {
        "name": name,
        "version": version,
        "build": build,
        "build_number": build_number,
        "depends": list(depends),
        "constrains": list(constrains),
        "subdir": subdir,
    }

    fn = f"{name}-{version}-{build}.tar.bz2"
    path = directory / fn
    with tarfile.open(path, "w:bz2") as tar:
        _add_bytes(tar, "info/index.json", json.dumps(index).encode())
        _add_bytes(tar, "info/files", "".join(f"{p}\n" for p in files).encode())
        if has_prefix:
            _add_bytes(tar, "info/has_prefix", "".join(f"{p}\n" for p in has_prefix).encode())
        for short_path, content in files.items():
            _add_bytes(tar, short_path, content.encode())

    data = path.read_bytes()
    entry = dict(
        index,
        md5=hashlib.md5(data).hexdigest(),
        sha256=hashlib.sha256(data).hexdigest(),
        size=len(data),
        timestamp=1700000000000,
    )
    return fn, entry


def make_channel(
    root: str | Path,
    packages: Iterable[Mapping[str, Any]],
    subdirs: Iterable[str] = (SUBDIR, "noarch"),
) -> Path:
    """Write a channel at ``root`` with a ``repodata.json`` for every subdir.

    Each package mapping holds the keyword arguments of :func:`make_package`;
    its ``subdir`` picks the directory it lands in.
    """
    root = Path(root)
    repodata = {
        subdir: {"info": {"subdir": subdir}, "packages": {}, "repodata_version": 1}
        for subdir in subdirs
    }
    for package in packages:
        subdir = package.get("subdir", SUBDIR)
        fn, entry = make_package(root / subdir, **package)
        repodata[subdir]["packages"][fn] = entry
    for subdir, data in repodata.items():
        (root / subdir).mkdir(parents=True, exist_ok=True)
        (root / subdir / "repodata.json").write_text(json.dumps(data, indent=2))
    return root


def script_with_placeholder(interpreter: str = "bin/python") -> str:
    return f"#!{PREFIX_PLACEHOLDER}/{interpreter}\nprint('hello from {PREFIX_PLACEHOLDER}')\n"
