# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from microconda.base.context import Context
from microconda.core.package_cache_data import MultiPackageCache
from microconda.gateways.connection.session import MicrocondaSession
from microconda.gateways.logging import initialize_std_loggers

from .helpers import SUBDIR, make_channel

if TYPE_CHECKING:
    from pathlib import Path

CHANNEL_A_PACKAGES = (
    {"name": "python", "version": "3.8.10", "build": "h_0"},
    {"name": "python", "version": "2.7.18", "build": "h_0"},
    {"name": "zlib", "version": "1.2.13", "build": "h_0"},
    {
        "name": "libpng",
        "version": "1.6.39",
        "build": "h_0",
        "depends": ["zlib >=1.2.13"],
    },
    {
        "name": "pkg-needs-python3",
        "version": "1.0",
        "build": "py_0",
        "depends": ["python >=3"],
    },
    {
        "name": "six",
        "version": "1.16.0",
        "build": "pyh_0",
        "depends": ["python"],
        "subdir": "noarch",
    },
)

CHANNEL_B_PACKAGES = (
    {"name": "python", "version": "3.8.10", "build": "hb_0"},
    {"name": "only-in-b", "version": "0.1", "build": "0"},
)


@pytest.fixture(autouse=True)
def clear_session_cache():
    MicrocondaSession.cache_clear()
    yield
    MicrocondaSession.cache_clear()


@pytest.fixture(autouse=True)
def std_loggers():
    """User-facing output goes to the current (captured) sys streams."""
    saved = {}
    for name in ("microconda", "urllib3"):
        logger = logging.getLogger(name)
        saved[name] = (logger.handlers[:], logger.level, logger.propagate)
    initialize_std_loggers()
    yield
    for name, (handlers, level, propagate) in saved.items():
        logger = logging.getLogger(name)
        logger.handlers = handlers
        logger.setLevel(level)
        logger.propagate = propagate


@pytest.fixture
def channel_a(tmp_path: Path) -> Path:
    return make_channel(tmp_path / "channels" / "chA", CHANNEL_A_PACKAGES)


@pytest.fixture
def channel_b(tmp_path: Path) -> Path:
    return make_channel(tmp_path / "channels" / "chB", CHANNEL_B_PACKAGES)


@pytest.fixture
def root_prefix(tmp_path: Path) -> Path:
    return tmp_path / "root"


@pytest.fixture
def target_prefix(tmp_path: Path) -> Path:
    return tmp_path / "envs" / "test"


@pytest.fixture
def context(root_prefix: Path, target_prefix: Path, channel_a: Path, channel_b: Path) -> Context:
    return Context(
        root_prefix=str(root_prefix),
        target_prefix=str(target_prefix),
        channels=(str(channel_a), str(channel_b)),
        subdir=SUBDIR,
        always_yes=True,
        quiet=True,
        fetch_threads=2,
        extract_threads=2,
    )


@pytest.fixture
def package_cache(context: Context) -> MultiPackageCache:
    return MultiPackageCache(context)
