# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Configuration for a single microconda operation.

Unlike a process-wide singleton, a :class:`Context` is built once, usually by
the command line layer, and handed explicitly to every component that needs
a setting. Settings may also be read from a YAML rc file.
"""

from __future__ import annotations

import os
import platform
import sys
from dataclasses import dataclass, field, fields, replace
from functools import cache
from logging import getLogger
from os.path import abspath, expanduser, isfile, join
from pathlib import Path
from typing import TYPE_CHECKING

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ..exceptions import ArgumentError, MicrocondaValueError
from .constants import (
    DEFAULT_CHANNEL_ALIAS,
    DEFAULT_CHANNELS,
    NOARCH_SUBDIR,
    PACKAGE_CACHE_CACHE_DIR,
    machine_bits,
)

if TYPE_CHECKING:
    from typing import Any

log = getLogger(__name__)

_platform_map = {
    "freebsd13": "freebsd",
    "linux2": "linux",
    "linux": "linux",
    "darwin": "osx",
    "win32": "win",
    "zos": "zos",
}
non_x86_machines = {
    "armv6l",
    "armv7l",
    "aarch64",
    "arm64",
    "ppc64",
    "ppc64le",
    "riscv64",
    "s390x",
}


@cache
def native_subdir() -> str:
    plat = _platform_map.get(sys.platform, "unknown")
    m = platform.machine()
    if m in non_x86_machines:
        return f"{plat}-{m}"
    elif plat == "zos":
        return "zos-z"
    else:
        return "%s-%d" % (plat, machine_bits)


def _expand(path: str | os.PathLike) -> str:
    return abspath(expanduser(os.fspath(path)))


@dataclass(frozen=True)
class Context:
    root_prefix: str
    target_prefix: str | None = None
    channels: tuple[str, ...] = DEFAULT_CHANNELS
    channel_alias: str = DEFAULT_CHANNEL_ALIAS
    subdir: str = field(default_factory=native_subdir)
    pkgs_dirs: tuple[str, ...] = ()

    offline: bool = False
    dry_run: bool = False
    always_yes: bool = False
    json: bool = False
    quiet: bool = False
    verbosity: int = 0
    allow_downgrade: bool = True

    ssl_verify: bool | str = True
    remote_connect_timeout_secs: float = 9.15
    remote_read_timeout_secs: float = 60.0
    remote_max_retries: int = 3
    remote_backoff_factor: float = 1.0
    #: 0 = always revalidate, 1 = honor Cache-Control max-age, >1 = fixed seconds
    local_repodata_ttl: int = 1

    fetch_threads: int = 5
    extract_threads: int = 4
    #: number of failed subdir fetches after which the rest are cancelled; 0 disables
    fail_fast: int = 0
    offline_skip_missing: bool = False

    def __post_init__(self):
        if not self.root_prefix:
            raise ArgumentError("A root prefix is required.")
        # frozen dataclass; normalize through object.__setattr__
        object.__setattr__(self, "root_prefix", _expand(self.root_prefix))
        if self.target_prefix is not None:
            object.__setattr__(self, "target_prefix", _expand(self.target_prefix))
        object.__setattr__(self, "channels", tuple(self.channels))
        if self.pkgs_dirs:
            object.__setattr__(
                self, "pkgs_dirs", tuple(_expand(p) for p in self.pkgs_dirs)
            )
        else:
            object.__setattr__(self, "pkgs_dirs", (join(self.root_prefix, "pkgs"),))
        if self.fetch_threads < 1 or self.extract_threads < 1:
            raise MicrocondaValueError("Thread counts must be positive integers.")
        if self.remote_max_retries < 0:
            raise MicrocondaValueError("remote_max_retries must not be negative.")
        if isinstance(self.ssl_verify, str):
            # a CA bundle path
            object.__setattr__(self, "ssl_verify", _expand(self.ssl_verify))
            if not isfile(self.ssl_verify):
                raise MicrocondaValueError(
                    "ssl_verify CA bundle %(path)s does not exist.", path=self.ssl_verify
                )

    @property
    def subdirs(self) -> tuple[str, str]:
        return (self.subdir, NOARCH_SUBDIR)

    @property
    def repodata_cache_dir(self) -> str:
        return join(self.pkgs_dirs[0], PACKAGE_CACHE_CACHE_DIR)

    @property
    def remote_timeout(self) -> tuple[float, float]:
        return self.remote_connect_timeout_secs, self.remote_read_timeout_secs

    @property
    def show_progress(self) -> bool:
        return not (self.json or self.quiet)

    def replace(self, **kwargs) -> Context:
        return replace(self, **kwargs)

    @classmethod
    def from_rc(cls, path: str | os.PathLike, **overrides) -> Context:
        """Build a context from a YAML rc file, with explicit overrides on top."""
        settings = load_rc(path)
        settings.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**settings)


def load_rc(path: str | os.PathLike) -> dict[str, Any]:
    known = {f.name for f in fields(Context)}
    try:
        text = Path(path).read_text()
    except FileNotFoundError:
        log.debug("rc file %s not found", path)
        return {}
    try:
        data = YAML(typ="safe").load(text) or {}
    except YAMLError as e:
        raise MicrocondaValueError(
            "Invalid rc file %(path)s: %(error)s", caused_by=e, path=str(path), error=e
        )
    if not isinstance(data, dict):
        raise MicrocondaValueError(
            "Invalid rc file %(path)s: expected a mapping", path=str(path)
        )

    settings = {}
    for key, value in data.items():
        if key not in known:
            log.warning("Ignoring unknown setting %r in %s", key, path)
            continue
        if key in ("channels", "pkgs_dirs") and isinstance(value, str):
            value = (value,)
        elif key in ("channels", "pkgs_dirs"):
            value = tuple(value)
        settings[key] = value
    log.debug("loaded %d settings from %s", len(settings), path)
    return settings
