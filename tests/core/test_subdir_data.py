# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from microconda import MicrocondaMultiError
from microconda.core.subdir_data import SubdirData, fetch_subdirs, make_subdir_datas
from microconda.exceptions import FetchFailed, FetchFailedMulti
from microconda.models.channel import Channel, channels_from_values

from ..helpers import SUBDIR

if TYPE_CHECKING:
    from pathlib import Path

    from microconda.base.context import Context


def _channel_subdir(context: Context, path: Path, subdir: str = SUBDIR) -> SubdirData:
    channel = Channel.from_value(str(path), context.channel_alias)
    return SubdirData(channel, subdir, context)


def test_load_local_channel(context: Context, channel_a: Path):
    sd = _channel_subdir(context, channel_a)
    assert not sd.loaded
    names = sorted({r.name for r in sd.iter_records()})
    assert sd.loaded
    assert names == ["libpng", "pkg-needs-python3", "python", "zlib"]

    record = next(sd.query("libpng"))
    assert record.channel == "chA"
    assert record.subdir == SUBDIR
    assert record.url == f"{channel_a.as_uri()}/{SUBDIR}/{record.fn}"
    assert record.depends == ("zlib >=1.2.13",)
    assert record.timestamp_seconds == 1700000000


def test_query(context: Context, channel_a: Path):
    sd = _channel_subdir(context, channel_a)
    assert [r.version for r in sd.query("python<3")] == ["2.7.18"]
    assert len(list(sd.query("python"))) == 2
    assert len(list(sd.query("*"))) == len(sd)
    assert list(sd.query("does-not-exist")) == []


def test_noarch_subdir(context: Context, channel_a: Path):
    sd = _channel_subdir(context, channel_a, "noarch")
    assert [(r.name, r.subdir) for r in sd.iter_records()] == [("six", "noarch")]


def test_local_channel_cache_written(context: Context, channel_a: Path):
    sd = _channel_subdir(context, channel_a).load()
    assert sd.cache_path_json.is_file()
    assert str(sd.cache_path_json).startswith(context.repodata_cache_dir)


def test_conda_shadows_tar_bz2(context: Context, tmp_path: Path):
    channel_dir = tmp_path / "shadow"
    (channel_dir / SUBDIR).mkdir(parents=True)
    entry = {"name": "zlib", "version": "1.2.13", "build": "h_0", "build_number": 0}
    (channel_dir / SUBDIR / "repodata.json").write_text(
        json.dumps(
            {
                "info": {"subdir": SUBDIR},
                "packages": {
                    "zlib-1.2.13-h_0.tar.bz2": entry,
                    "zlib-1.2.11-h_0.tar.bz2": dict(entry, version="1.2.11"),
                },
                "packages.conda": {"zlib-1.2.13-h_0.conda": entry},
            }
        )
    )
    sd = _channel_subdir(context, channel_dir)
    assert sorted(r.fn for r in sd.iter_records()) == [
        "zlib-1.2.11-h_0.tar.bz2",
        "zlib-1.2.13-h_0.conda",
    ]


def test_malformed_entries_skipped(context: Context, tmp_path: Path):
    channel_dir = tmp_path / "broken"
    (channel_dir / SUBDIR).mkdir(parents=True)
    (channel_dir / SUBDIR / "repodata.json").write_text(
        json.dumps(
            {
                "packages": {
                    "good-1.0-0.tar.bz2": {"name": "good", "version": "1.0", "build": "0"},
                    "bad-1.0-0.tar.bz2": {"version": "1.0"},
                    "future-1.0-0.tar.bz2": {
                        "name": "future",
                        "version": "1.0",
                        "build": "0",
                        "record_version": 2,
                    },
                }
            }
        )
    )
    sd = _channel_subdir(context, channel_dir)
    assert [r.name for r in sd.iter_records()] == ["good"]


def test_missing_local_subdir(context: Context, tmp_path: Path):
    sd = _channel_subdir(context, tmp_path / "nowhere")
    with pytest.raises(FetchFailed) as exc:
        sd.load()
    assert "404" in str(exc.value)


def test_make_subdir_datas(context: Context):
    channels = channels_from_values(context.channels, context.channel_alias)
    sds = make_subdir_datas(channels, context)
    assert [(sd.channel.name, sd.subdir) for sd in sds] == [
        ("chA", SUBDIR),
        ("chA", "noarch"),
        ("chB", SUBDIR),
        ("chB", "noarch"),
    ]


def test_make_subdir_datas_explicit_platform(context: Context, channel_a: Path):
    channels = channels_from_values([f"{channel_a.as_uri()}/noarch"], context.channel_alias)
    assert [sd.subdir for sd in make_subdir_datas(channels, context)] == ["noarch"]


def test_fetch_subdirs(context: Context, tmp_path: Path):
    channels = channels_from_values(
        [*context.channels, str(tmp_path / "missing")], context.channel_alias
    )
    report = fetch_subdirs(make_subdir_datas(channels, context), context)
    assert not report.ok
    assert [sd.channel.name for sd in report.succeeded] == ["chA", "chA", "chB", "chB"]
    assert len(report.failed) == 2
    assert all(isinstance(e, FetchFailed) for e in report.failed.values())
    with pytest.raises(MicrocondaMultiError) as exc:
        report.raise_for_failures()
    assert exc.value.contains(FetchFailed)
    assert isinstance(exc.value, FetchFailedMulti)
    assert isinstance(exc.value, FetchFailed)
    assert exc.value.subdir == exc.value.errors[0].subdir
    assert exc.value.url == exc.value.errors[0].url


def test_fetch_subdirs_catchable_as_fetch_failed(context: Context, tmp_path: Path):
    channels = channels_from_values(
        [str(tmp_path / "missing1"), str(tmp_path / "missing2")], context.channel_alias
    )
    report = fetch_subdirs(make_subdir_datas(channels, context), context)
    with pytest.raises(FetchFailed) as exc:
        report.raise_for_failures()
    assert len(exc.value.errors) == 4
    assert "missing1" in str(exc.value)
    assert "missing2" in str(exc.value)


def test_fetch_subdirs_undecodable_repodata(context: Context, tmp_path: Path):
    broken = tmp_path / "broken"
    (broken / SUBDIR).mkdir(parents=True)
    (broken / SUBDIR / "repodata.json").write_bytes(b'{"packages": {"\xff\xfe": {}}}')
    channels = channels_from_values([f"{broken.as_uri()}/{SUBDIR}"], context.channel_alias)

    report = fetch_subdirs(make_subdir_datas(channels, context), context)
    assert report.succeeded == []
    (error,) = report.failed.values()
    assert isinstance(error, FetchFailed)
    assert error.subdir == SUBDIR
    assert "invalid UTF-8" in str(error)


def test_fetch_subdirs_single_failure(context: Context, tmp_path: Path):
    missing = (tmp_path / "missing").as_uri()
    channels = channels_from_values([f"{missing}/noarch"], context.channel_alias)
    report = fetch_subdirs(make_subdir_datas(channels, context), context)
    assert list(report.failed) == [f"{missing}/noarch"]
    with pytest.raises(FetchFailed):
        report.raise_for_failures()


def test_fetch_subdirs_fail_fast(context: Context, tmp_path: Path):
    channels = channels_from_values(
        [str(tmp_path / f"missing{i}") for i in range(40)], context.channel_alias
    )
    fast = context.replace(fail_fast=1, fetch_threads=1)
    report = fetch_subdirs(make_subdir_datas(channels, fast), fast)
    assert len(report.failed) >= 1
    assert report.cancelled
    assert len(report.failed) + len(report.cancelled) == 80
    assert report.succeeded == []


def test_fetch_subdirs_empty(context: Context):
    report = fetch_subdirs([], context)
    assert report.ok
    report.raise_for_failures()
