# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from microconda.base.constants import INSTALLED_PRIORITY
from microconda.core.index import Pool
from microconda.core.prefix_data import PrefixData
from microconda.core.subdir_data import fetch_subdirs, make_subdir_datas
from microconda.exceptions import MicrocondaError
from microconda.models.channel import channels_from_values
from microconda.models.records import PackageRecord, PrefixRecord

from ..helpers import SUBDIR

if TYPE_CHECKING:
    from microconda.base.context import Context


def _record(name, version="1.0", build="0", channel="chan", **kwargs):
    return PackageRecord(name, version, build, channel=channel, subdir=SUBDIR, **kwargs)


def _pool(context: Context, prefix_data: PrefixData | None = None) -> Pool:
    channels = channels_from_values(context.channels, context.channel_alias)
    report = fetch_subdirs(make_subdir_datas(channels, context), context)
    return Pool.from_subdirs(report.succeeded, prefix_data)


def test_add_repo_returns_handles():
    pool = Pool()
    first = pool.add_repo("one", [_record("a")], priority=2)
    second = pool.add_repo("two", [_record("b")], priority=1)
    assert (first, second) == (0, 1)
    assert pool.repo(first).name == "one"
    assert len(pool) == 2
    assert pool.names == {"a", "b"}


def test_duplicates_dropped_first_wins():
    pool = Pool()
    rec = _record("a")
    pool.add_repo("one", [rec], priority=2)
    pool.add_repo("two", [_record("a"), _record("a", "2.0")], priority=1)
    assert len(pool) == 2
    assert pool.repo_of(rec).name == "one"
    assert len(pool.repo(1)) == 1


def test_select_ordering():
    pool = Pool()
    low = [_record("a", "3.0", channel="low")]
    high = [
        _record("a", "1.0", channel="high"),
        _record("a", "2.0", channel="high"),
        _record("a", "2.0", "1", channel="high", build_number=1),
    ]
    pool.add_repo("low", low, priority=1)
    pool.add_repo("high", high, priority=2)
    # priority beats version, then version, then build number
    assert [(r.channel, r.version, r.build) for r in pool.select("a")] == [
        ("high", "2.0", "1"),
        ("high", "2.0", "0"),
        ("high", "1.0", "0"),
        ("low", "3.0", "0"),
    ]
    assert [r.version for r in pool.select("a>=2")] == ["2.0", "2.0", "3.0"]
    assert pool.select("nope") == []


def test_subpriority_and_timestamp_break_ties():
    pool = Pool()
    older = _record("a", channel="c1", timestamp=1)
    newer = _record("a", channel="c2", timestamp=2)
    noarch = _record("a", channel="c3")
    pool.add_repo("noarch", [noarch], priority=1, subpriority=1)
    pool.add_repo("older", [older], priority=1, subpriority=2)
    pool.add_repo("newer", [newer], priority=1, subpriority=2)
    assert pool.select("a") == [newer, older, noarch]


def test_frozen_pool_rejects_repos():
    pool = Pool().freeze()
    assert pool.frozen
    with pytest.raises(MicrocondaError):
        pool.add_repo("late", [], priority=1)


def test_single_installed_repo(tmp_path):
    pool = Pool()
    prefix_data = PrefixData(tmp_path)
    pool.add_installed(prefix_data)
    with pytest.raises(MicrocondaError):
        pool.add_installed(prefix_data)


def test_from_subdirs_priorities(context: Context):
    pool = _pool(context)
    assert pool.frozen
    assert [(repo.name, repo.priority, repo.subpriority) for repo in pool.repos] == [
        (f"chA/{SUBDIR}", 2, 2),
        ("chA/noarch", 2, 1),
        (f"chB/{SUBDIR}", 1, 2),
        ("chB/noarch", 1, 1),
    ]
    assert pool.installed_repo is None
    # equal versions: the first channel wins
    best = pool.select("python=3.8")[0]
    assert (best.channel, best.build) == ("chA", "h_0")
    assert pool.select("only-in-b")[0].channel == "chB"


def test_installed_repo_dedups_channel_records(context: Context, tmp_path):
    channel_pool = _pool(context)
    zlib = channel_pool.select("zlib")[0]

    prefix_data = PrefixData(tmp_path / "env")
    prefix_data.create()
    prefix_data.insert(PrefixRecord.from_package_record(zlib, files=("x",)))

    pool = _pool(context, PrefixData(tmp_path / "env"))
    installed = pool.installed_repo
    assert installed.priority == INSTALLED_PRIORITY
    assert [r.name for r in installed] == ["zlib"]
    # the channel copy of the installed record is dropped
    assert len(pool.records_by_name("zlib")) == 1
    assert pool.is_installed(pool.select("zlib")[0])
    assert not pool.is_installed(pool.select("libpng")[0])
    assert pool.find_record(zlib.identity) == zlib
