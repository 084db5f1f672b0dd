# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
from __future__ import annotations

import hashlib
import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING

import pytest
import responses

from microconda.base.context import Context
from microconda.common.url import path_to_url
from microconda.core.subdir_data import SubdirData
from microconda.exceptions import (
    CacheCorruption,
    FetchFailed,
    MicrocondaHTTPError,
    OfflineError,
)
from microconda.gateways.connection.download import download
from microconda.gateways.connection.session import build_retry, get_session
from microconda.models.channel import Channel

if TYPE_CHECKING:
    from pathlib import Path

URL = "https://repo.example.com/chan/linux-64/zlib-1.2.13-h_0.tar.bz2"
PAYLOAD = b"not really a tarball\n" * 100
SHA256 = hashlib.sha256(PAYLOAD).hexdigest()


@pytest.fixture
def remote_context(tmp_path: Path) -> Context:
    return Context(root_prefix=str(tmp_path / "root"), remote_max_retries=0, quiet=True)


def test_session_is_shared_per_thread_and_config(remote_context: Context):
    assert get_session(remote_context) is get_session(remote_context)
    assert get_session(remote_context) is not get_session(
        remote_context.replace(offline=True)
    )


def test_build_retry(remote_context: Context):
    retry = build_retry(remote_context.replace(remote_max_retries=3))
    assert retry.total == 3
    assert 500 in retry.status_forcelist
    assert 404 not in retry.status_forcelist
    # a too-large request stays too large on retry
    assert 413 not in retry.status_forcelist


def test_offline_session_refuses_remote(remote_context: Context):
    session = get_session(remote_context.replace(offline=True))
    with pytest.raises(OfflineError):
        session.get(URL)


def test_file_url(remote_context: Context, tmp_path: Path):
    source = tmp_path / "hello.txt"
    source.write_text("hello")
    response = get_session(remote_context).get(path_to_url(str(source)))
    assert response.status_code == 200
    assert response.text == "hello"
    assert response.headers["Content-Length"] == "5"

    missing = get_session(remote_context).get(path_to_url(str(tmp_path / "missing")))
    assert missing.status_code == 404


@responses.activate
def test_download(remote_context: Context, tmp_path: Path):
    responses.add(responses.GET, URL, body=PAYLOAD)
    target = tmp_path / "zlib.tar.bz2"
    progress = []

    download(
        URL,
        target,
        remote_context,
        sha256=SHA256,
        size=len(PAYLOAD),
        progress_update_callback=progress.append,
    )
    assert target.read_bytes() == PAYLOAD
    assert not (tmp_path / "zlib.tar.bz2.partial").exists()


@responses.activate
def test_download_retries_bad_checksum_once(remote_context: Context, tmp_path: Path):
    responses.add(responses.GET, URL, body=b"garbage")
    responses.add(responses.GET, URL, body=PAYLOAD)
    target = tmp_path / "zlib.tar.bz2"

    download(URL, target, remote_context, sha256=SHA256)
    assert target.read_bytes() == PAYLOAD
    assert len(responses.calls) == 2


@responses.activate
def test_download_cache_corruption(remote_context: Context, tmp_path: Path):
    responses.add(responses.GET, URL, body=b"garbage")
    target = tmp_path / "zlib.tar.bz2"

    with pytest.raises(CacheCorruption) as exc:
        download(URL, target, remote_context, md5=hashlib.md5(PAYLOAD).hexdigest())
    assert exc.value.dump_map()["checksum_type"] == "md5"
    assert len(responses.calls) == 2
    assert not target.exists()
    assert not (tmp_path / "zlib.tar.bz2.partial").exists()


@responses.activate
def test_download_size_mismatch(remote_context: Context, tmp_path: Path):
    responses.add(responses.GET, URL, body=PAYLOAD)
    with pytest.raises(CacheCorruption) as exc:
        download(URL, tmp_path / "zlib.tar.bz2", remote_context, size=len(PAYLOAD) + 1)
    assert exc.value.dump_map()["checksum_type"] == "size"


@responses.activate
def test_download_http_error(remote_context: Context, tmp_path: Path):
    responses.add(responses.GET, URL, status=404)
    with pytest.raises(MicrocondaHTTPError) as exc:
        download(URL, tmp_path / "zlib.tar.bz2", remote_context)
    assert exc.value.status_code == 404
    assert not (tmp_path / "zlib.tar.bz2").exists()


def test_offline_error_url_with_percent(remote_context: Context):
    session = get_session(remote_context.replace(offline=True))
    url = "https://repo.example.com/my%20chan/noarch/repodata.json"
    with pytest.raises(OfflineError) as exc:
        session.get(url)
    assert url in str(exc.value)


class _ScriptedHandler(BaseHTTPRequestHandler):
    """Answers each GET with the next scripted status, then with 200."""

    def do_GET(self):
        self.server.requests.append(self.path)
        status = self.server.script.pop(0) if self.server.script else 200
        if status == "reset":
            # drop the connection without a status line
            self.close_connection = True
            return
        body = self.server.body if status == 200 else b""
        self.send_response(status)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def scripted_server(monkeypatch):
    for var in ("http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(var, raising=False)
        monkeypatch.delenv(var.upper(), raising=False)
    server = ThreadingHTTPServer(("127.0.0.1", 0), _ScriptedHandler)
    server.script = []
    server.requests = []
    server.body = PAYLOAD
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join()


@pytest.fixture
def retrying_context(remote_context: Context) -> Context:
    return remote_context.replace(remote_max_retries=3, remote_backoff_factor=0)


def _server_url(server, path: str) -> str:
    host, port = server.server_address[:2]
    return f"http://{host}:{port}{path}"


@pytest.mark.parametrize("failure", [503, "reset"])
def test_download_retries_transient_failure(
    scripted_server, retrying_context: Context, tmp_path: Path, failure
):
    scripted_server.script.append(failure)
    target = tmp_path / "zlib.tar.bz2"
    url = _server_url(scripted_server, "/chan/linux-64/zlib-1.2.13-h_0.tar.bz2")

    download(url, target, retrying_context, sha256=SHA256, size=len(PAYLOAD))
    assert target.read_bytes() == PAYLOAD
    assert len(scripted_server.requests) == 2


def test_download_gives_up_after_max_retries(
    scripted_server, retrying_context: Context, tmp_path: Path
):
    scripted_server.script.extend([503] * 4)
    url = _server_url(scripted_server, "/chan/linux-64/zlib-1.2.13-h_0.tar.bz2")
    with pytest.raises(MicrocondaHTTPError):
        download(url, tmp_path / "zlib.tar.bz2", retrying_context)
    assert len(scripted_server.requests) == 4


def test_repodata_retries_then_succeeds(scripted_server, retrying_context: Context):
    scripted_server.body = json.dumps({"packages": {}}).encode()
    scripted_server.script.extend(["reset", 503])
    channel = Channel.from_value(
        _server_url(scripted_server, "/chan"), retrying_context.channel_alias
    )
    sd = SubdirData(channel, "linux-64", retrying_context).load()
    assert len(sd) == 0
    assert scripted_server.requests == ["/chan/linux-64/repodata.json"] * 3


def test_repodata_not_found_is_not_retried(scripted_server, retrying_context: Context):
    scripted_server.script.append(404)
    channel = Channel.from_value(
        _server_url(scripted_server, "/chan"), retrying_context.channel_alias
    )
    with pytest.raises(FetchFailed) as exc:
        SubdirData(channel, "linux-64", retrying_context).load()
    assert exc.value.dump_map()["status_code"] == 404
    assert scripted_server.requests == ["/chan/linux-64/repodata.json"]
