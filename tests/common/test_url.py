# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
from __future__ import annotations

import pytest

from microconda.common.url import (
    is_url,
    join_url,
    mask_anaconda_token,
    path_to_url,
    split_anaconda_token,
    url_to_path,
)


def test_is_url():
    assert is_url("https://conda.anaconda.org/conda-forge")
    assert is_url("file:///srv/channel")
    assert not is_url("/srv/channel")
    assert not is_url("conda-forge")
    assert not is_url(None)


def test_path_to_url_and_back():
    url = path_to_url("/srv/my channel")
    assert url == "file:///srv/my%20channel"
    assert url_to_path(url) == "/srv/my channel"
    assert path_to_url(url) == url


def test_path_to_url_rejects_empty():
    with pytest.raises(ValueError):
        path_to_url("")


def test_url_to_path_rejects_other_schemes():
    with pytest.raises(ValueError):
        url_to_path("https://example.com/x")


@pytest.mark.parametrize(
    "args, expected",
    [
        (("https://a.com/", "/b/", "c"), "https://a.com/b/c"),
        (("/srv", "noarch", "repodata.json"), "/srv/noarch/repodata.json"),
        (("file:///srv/chan", "linux-64"), "file:///srv/chan/linux-64"),
    ],
)
def test_join_url(args, expected):
    assert join_url(*args) == expected


def test_tokens():
    url = "https://conda.anaconda.org/t/tk-123-456/private/noarch"
    assert mask_anaconda_token(url) == "https://conda.anaconda.org/t/<TOKEN>/private/noarch"
    assert split_anaconda_token(url) == (
        "https://conda.anaconda.org/private/noarch",
        "tk-123-456",
    )
    assert split_anaconda_token("https://1.2.3.4/path/") == ("https://1.2.3.4/path", None)
