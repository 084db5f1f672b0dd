# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING

import pytest

from microconda import MicrocondaMultiError, api
from microconda.core.prefix_data import PrefixData
from microconda.exceptions import (
    ArgumentError,
    DryRunExit,
    FetchFailed,
    PackagesNotFound,
    PrefixAlreadyExists,
    PrefixNotFound,
    UnsatisfiableSpecs,
    UserDeclined,
)

if TYPE_CHECKING:
    from pathlib import Path

    from microconda.base.context import Context

REMOTE_CHANNEL = "https://repo.example.com/chan"


def _installed(prefix: Path) -> dict[str, str]:
    return {
        r.name: f"{r.channel}::{r.dist_name}" for r in PrefixData(prefix).iter_records()
    }


def test_create(context: Context, target_prefix: Path):
    result = api.create(context, ["libpng"])
    assert result.executed
    assert _installed(target_prefix) == {
        "zlib": "chA::zlib-1.2.13-h_0",
        "libpng": "chA::libpng-1.6.39-h_0",
    }
    assert [r["name"] for r in result.summary["actions"]["LINK"]] == ["zlib", "libpng"]
    assert PrefixData(target_prefix).get("libpng").requested_spec == "libpng"
    assert PrefixData(target_prefix).get("zlib").requested_spec is None


def test_create_existing_prefix(context: Context, target_prefix: Path):
    target_prefix.mkdir(parents=True)
    # fails before touching the network
    offline = context.replace(channels=(REMOTE_CHANNEL,), offline=True)
    with pytest.raises(PrefixAlreadyExists):
        api.create(offline, ["zlib"])


def test_create_empty_environment(context: Context, target_prefix: Path):
    result = api.create(context, [])
    assert result.executed
    assert PrefixData(target_prefix).is_environment()
    assert len(PrefixData(target_prefix)) == 0


def test_install_is_idempotent(context: Context, target_prefix: Path, monkeypatch):
    api.create(context, ["python"])
    before = _installed(target_prefix)

    # no prompt may be shown: end of input would decline
    monkeypatch.setattr("sys.stdin", io.StringIO(""))
    result = api.install(context.replace(always_yes=False), ["python"])
    assert not result.executed
    assert result.transaction.nothing_to_do
    assert _installed(target_prefix) == before

    reversed_channels = context.replace(
        always_yes=False, channels=tuple(reversed(context.channels))
    )
    result = api.install(reversed_channels, ["python"])
    assert not result.executed
    assert result.transaction.nothing_to_do
    assert _installed(target_prefix) == before


def test_install_and_remove(context: Context, target_prefix: Path):
    api.create(context, ["python=2.7"])
    api.install(context, ["libpng"])
    assert set(_installed(target_prefix)) == {"python", "zlib", "libpng"}
    assert _installed(target_prefix)["python"] == "chA::python-2.7.18-h_0"

    api.remove(context, ["zlib"])
    assert _installed(target_prefix) == {"python": "chA::python-2.7.18-h_0"}
    assert not (target_prefix / "share" / "zlib").exists()


def test_install_upgrade(context: Context, target_prefix: Path):
    api.create(context, ["python=2.7"])
    result = api.install(context, ["python>=3"])
    assert [r["dist_name"] for r in result.summary["actions"]["UNLINK"]] == [
        "python-2.7.18-h_0"
    ]
    assert _installed(target_prefix) == {"python": "chA::python-3.8.10-h_0"}


def test_install_requires_environment(context: Context):
    with pytest.raises(PrefixNotFound):
        api.install(context, ["zlib"])


def test_install_requires_specs(context: Context):
    api.create(context, [])
    with pytest.raises(ArgumentError):
        api.install(context, [])


def test_missing_target_prefix(context: Context):
    with pytest.raises(ArgumentError) as exc:
        api.create(context.replace(target_prefix=None), ["zlib"])
    assert exc.value.return_code == 2


def test_offline_cold_cache(context: Context, target_prefix: Path):
    offline = context.replace(channels=(REMOTE_CHANNEL,), offline=True)
    with pytest.raises(FetchFailed) as exc:
        api.create(offline, ["zlib"])
    assert isinstance(exc.value, MicrocondaMultiError)
    assert exc.value.contains(FetchFailed)
    assert not target_prefix.exists()


def test_conflict(context: Context, target_prefix: Path):
    with pytest.raises(UnsatisfiableSpecs) as exc:
        api.create(context, ["python=2.7", "pkg-needs-python3"])
    assert set(exc.value.specs) == {"python 2.7*", "pkg-needs-python3"}
    assert not target_prefix.exists()


def test_not_found(context: Context):
    with pytest.raises(PackagesNotFound):
        api.create(context, ["nonexistent"])


def test_remove_not_installed(context: Context):
    api.create(context, ["zlib"])
    with pytest.raises(PackagesNotFound):
        api.remove(context, ["libpng"])


def test_decline(context: Context, target_prefix: Path, monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("n\n"))
    with pytest.raises(UserDeclined) as exc:
        api.create(context.replace(always_yes=False), ["zlib"])
    assert exc.value.return_code == 0
    assert "Proceed ([y]/n)?" in capsys.readouterr().out
    assert not target_prefix.exists()
    assert os.listdir(context.pkgs_dirs[0]) == ["cache"]


def test_accept(context: Context, target_prefix: Path, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO("y\n"))
    assert api.create(context.replace(always_yes=False), ["zlib"]).executed
    assert set(_installed(target_prefix)) == {"zlib"}


def test_json_never_prompts(context: Context, target_prefix: Path, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO(""))
    assert api.create(context.replace(always_yes=False, json=True), ["zlib"]).executed


def test_dry_run(context: Context, target_prefix: Path):
    with pytest.raises(DryRunExit):
        api.create(context.replace(dry_run=True), ["zlib"])
    assert not target_prefix.exists()


def test_list_packages(context: Context):
    api.create(context, ["libpng", "python"])
    assert [r.name for r in api.list_packages(context)] == ["libpng", "python", "zlib"]
