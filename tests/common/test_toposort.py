# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
from microconda.common.toposort import toposort


def test_simple():
    data = {"a": "bc", "b": "c"}
    assert toposort(data) == ["c", "b", "a"]


def test_levels_are_sorted():
    data = {"app": {"zlib", "libpng"}, "libpng": {"zlib"}, "extra": set()}
    assert toposort(data) == ["extra", "zlib", "libpng", "app"]


def test_self_dependency_is_ignored():
    assert toposort({"a": {"a", "b"}, "b": set()}) == ["b", "a"]


def test_cycle():
    data = {"a": "b", "b": "c", "c": "a", "d": "a"}
    results = toposort(data)
    # the cycle is broken somewhere, but d still comes last
    assert sorted(results[:3]) == ["a", "b", "c"]
    assert results[3] == "d"


def test_empty():
    assert toposort({}) == []
