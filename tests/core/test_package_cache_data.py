# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
from __future__ import annotations

import json
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from os.path import isdir, isfile, join
from typing import TYPE_CHECKING

import pytest

from microconda.api import load_pool
from microconda.core import package_cache_data
from microconda.core.package_cache_data import MultiPackageCache, PackageCacheData
from microconda.exceptions import CacheCorruption, MicrocondaError

if TYPE_CHECKING:
    from pathlib import Path

    from microconda.base.context import Context
    from microconda.models.records import PackageRecord


@pytest.fixture
def records(context: Context) -> list[PackageRecord]:
    pool = load_pool(context)
    return [pool.select("zlib")[0], pool.select("libpng")[0]]


def test_ensure_all(context: Context, package_cache: MultiPackageCache, records):
    zlib, libpng = records
    assert package_cache.download_size(zlib) == zlib.size > 0

    extracted = package_cache.ensure_all(records)
    pkgs_dir = context.pkgs_dirs[0]
    assert extracted == {
        zlib: join(pkgs_dir, "zlib-1.2.13-h_0"),
        libpng: join(pkgs_dir, "libpng-1.6.39-h_0"),
    }
    assert isfile(join(pkgs_dir, zlib.fn))
    assert isfile(join(extracted[zlib], "share", "zlib", "1.2.13.txt"))
    with open(join(extracted[zlib], "info", "repodata_record.json")) as fh:
        assert json.load(fh)["sha256"] == zlib.sha256
    assert (package_cache.fetch_count, package_cache.extract_count) == (2, 2)
    assert package_cache.download_size(zlib) == 0


def test_second_run_is_a_cache_hit(context: Context, package_cache, records, mocker):
    first = package_cache.ensure_all(records)
    spy = mocker.spy(package_cache_data, "download")
    again = MultiPackageCache(context)
    assert again.ensure_all(records) == first
    assert (again.fetch_count, again.extract_count) == (0, 0)
    assert spy.call_count == 0


def test_stale_extracted_dir_is_replaced(context: Context, package_cache, records):
    zlib = records[0]
    extracted = package_cache.ensure_extracted(zlib)
    record_path = join(extracted, "info", "repodata_record.json")
    with open(record_path, "w") as fh:
        json.dump(dict(zlib.dump(), sha256="0" * 64), fh)
    assert package_cache.query_extracted(zlib) is None

    again = MultiPackageCache(context)
    assert again.ensure_extracted(zlib) == extracted
    # the archive was still valid
    assert (again.fetch_count, again.extract_count) == (0, 1)
    with open(record_path) as fh:
        assert json.load(fh)["sha256"] == zlib.sha256


def test_corrupt_archive_is_fetched_again(context: Context, records):
    zlib = records[0]
    pkgs_dir = context.pkgs_dirs[0]
    cache = MultiPackageCache(context)
    cache.ensure_extracted(zlib)

    with open(join(pkgs_dir, zlib.fn), "r+b") as fh:
        fh.write(b"garbage")
    cache_data = PackageCacheData(pkgs_dir)
    assert not cache_data.tarball_is_valid(zlib)
    assert cache_data.tarball_is_valid(zlib, verify=False)

    # only the archive is damaged; the extracted entry is still valid
    assert cache_data.get_extracted(zlib)
    cache_data_dir = cache_data.extracted_path(zlib)
    shutil.rmtree(cache_data_dir)
    again = MultiPackageCache(context)
    again.ensure_extracted(zlib)
    assert (again.fetch_count, again.extract_count) == (1, 1)
    assert cache_data.tarball_is_valid(zlib)


def test_checksum_mismatch_raises(context: Context, package_cache, records):
    bad = replace(records[0], sha256="0" * 64)
    with pytest.raises(CacheCorruption):
        package_cache.ensure_extracted(bad)
    pkgs_dir = context.pkgs_dirs[0]
    assert not isfile(join(pkgs_dir, bad.fn))
    assert not isdir(join(pkgs_dir, bad.dist_name))


def test_record_without_url(package_cache, records):
    with pytest.raises(MicrocondaError, match="no url"):
        package_cache.ensure_extracted(replace(records[0], url=""))
    assert MultiPackageCache._entry_locks == {}


def test_later_cache_dirs_are_read(context: Context, tmp_path: Path, records):
    MultiPackageCache(context).ensure_all(records)

    other = str(tmp_path / "other-pkgs")
    multi = MultiPackageCache(context, pkgs_dirs=[other, *context.pkgs_dirs])
    assert multi.query_extracted(records[0]).startswith(context.pkgs_dirs[0])
    multi.ensure_all(records)
    assert (multi.fetch_count, multi.extract_count) == (0, 0)


def test_no_writable_cache(context: Context, tmp_path: Path, records):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    multi = MultiPackageCache(context, pkgs_dirs=[str(blocker)])
    with pytest.raises(MicrocondaError, match="No writable package cache"):
        multi.ensure_extracted(records[0])


def test_ensure_all_empty(package_cache):
    assert package_cache.ensure_all([]) == {}


def test_concurrent_ensure_extracted(context: Context, records):
    zlib = records[0]
    n_threads = 8
    barrier = threading.Barrier(n_threads)
    caches = [MultiPackageCache(context) for _ in range(n_threads)]

    def ensure(cache: MultiPackageCache) -> str:
        barrier.wait()
        return cache.ensure_extracted(zlib)

    with ThreadPoolExecutor(n_threads) as executor:
        extracted = set(executor.map(ensure, caches))

    assert extracted == {join(context.pkgs_dirs[0], "zlib-1.2.13-h_0")}
    assert sum(cache.fetch_count for cache in caches) == 1
    assert sum(cache.extract_count for cache in caches) == 1


def test_entry_locks_are_dropped_after_use(package_cache, records):
    zlib = records[0]
    with MultiPackageCache._entry_lock(zlib):
        assert len(MultiPackageCache._entry_locks) == 1
    assert MultiPackageCache._entry_locks == {}

    package_cache.ensure_all(records)
    assert MultiPackageCache._entry_locks == {}
