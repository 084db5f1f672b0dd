# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
from __future__ import annotations

import io
import json

import pytest

from microconda import MicrocondaError
from microconda.base.context import Context
from microconda.exceptions import DryRunExit, UserDeclined
from microconda.reporters import (
    QuietProgressBar,
    TQDMProgressBar,
    confirm_yn,
    get_progress_bar,
    prompt,
    render,
)
from microconda.utils import human_bytes


@pytest.fixture
def context(tmp_path) -> Context:
    return Context(root_prefix=str(tmp_path))


@pytest.mark.parametrize(
    "answer, expected",
    [("\n", "yes"), ("y\n", "yes"), ("YES\n", "yes"), ("n\n", "no"), ("", "no")],
)
def test_prompt(monkeypatch, capsys, answer, expected):
    monkeypatch.setattr("sys.stdin", io.StringIO(answer))
    assert prompt() == expected
    assert capsys.readouterr().out.startswith("Proceed ([y]/n)? ")


def test_prompt_repeats_on_invalid_choice(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("maybe\nn\n"))
    assert prompt() == "no"
    assert "Invalid choice: maybe" in capsys.readouterr().out


def test_confirm_yn(context: Context, monkeypatch):
    assert confirm_yn(context.replace(always_yes=True))
    assert confirm_yn(context.replace(json=True))
    with pytest.raises(DryRunExit):
        confirm_yn(context.replace(dry_run=True, always_yes=True))

    monkeypatch.setattr("sys.stdin", io.StringIO("y\n"))
    assert confirm_yn(context)
    monkeypatch.setattr("sys.stdin", io.StringIO("n\n"))
    with pytest.raises(UserDeclined):
        confirm_yn(context)


def test_render(context: Context, capsys):
    render("plain text", context)
    assert capsys.readouterr().out == "plain text\n"
    render({"b": 1, "a": 2}, context.replace(json=True))
    assert json.loads(capsys.readouterr().out) == {"a": 2, "b": 1}


def test_get_progress_bar(context: Context, capsys):
    assert type(get_progress_bar("x", context.replace(quiet=True))) is QuietProgressBar
    bar = get_progress_bar("zlib", context)
    assert isinstance(bar, TQDMProgressBar)
    bar.update_to(0.5)
    bar.update_to(1.0)
    bar.close()
    assert "zlib" in capsys.readouterr().out


@pytest.mark.parametrize(
    "n, expected",
    [(42, "42 B"), (1042, "1 KB"), (10004242, "9.5 MB"), (100000004242, "93.13 GB")],
)
def test_human_bytes(n, expected):
    assert human_bytes(n) == expected


class _UnreadableStdin:
    def readline(self):
        raise OSError("read 100% failed")


def test_prompt_unreadable_stdin(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", _UnreadableStdin())
    with pytest.raises(MicrocondaError) as exc:
        prompt()
    assert str(exc.value) == "cannot read from stdin: read 100% failed"
