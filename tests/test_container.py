from __future__ import annotations

import urllib.error
import urllib.request
from pathlib import Path

import pytest

from devlauncher.container import HttpContainer, normalize_context_path


@pytest.fixture
def http(logger):
    container = HttpContainer(logger=logger)
    yield container
    container.stop()


def fetch(port: int, path: str) -> tuple[int, bytes]:
    try:
        with urllib.request.urlopen(f"http://127.0.0.1:{port}{path}", timeout=5) as response:
            return response.status, response.read()
    except urllib.error.HTTPError as e:
        return e.code, b""


@pytest.mark.parametrize(
    "raw, expected",
    [(None, "/"), ("", "/"), ("/", "/"), ("app", "/app"), ("/app/", "/app"), ("a/b", "/a/b")],
)
def test_normalize_context_path(raw, expected) -> None:
    assert normalize_context_path(raw) == expected


def test_resolve_webapp_prefers_longest_context(http, tmp_path: Path) -> None:
    http.add_webapp("/", tmp_path / "root")
    http.add_webapp("/app", tmp_path / "app")
    http.add_webapp("/app/admin", tmp_path / "admin")

    assert http.resolve_webapp("/app/admin/x.html") == ("/app/admin", tmp_path / "admin")
    assert http.resolve_webapp("/app/index.html") == ("/app", tmp_path / "app")
    assert http.resolve_webapp("/application") == ("/", tmp_path / "root")


def test_resolve_webapp_without_root_context(http, tmp_path: Path) -> None:
    http.add_webapp("/app", tmp_path)
    assert http.resolve_webapp("/other") is None


def test_serves_files_by_context_path(http, tmp_path: Path) -> None:
    webapp = tmp_path / "webapp"
    (webapp / "css").mkdir(parents=True)
    (webapp / "css" / "site.css").write_text("body{}")
    http.add_webapp("/shop", webapp)
    http.add_connector(0, "127.0.0.1")

    http.start()
    port = http.bound_ports[0]

    assert fetch(port, "/shop/css/site.css") == (200, b"body{}")
    assert fetch(port, "/elsewhere/site.css")[0] == 404


def test_stop_is_idempotent_and_notifies_listeners(http, tmp_path: Path) -> None:
    calls = []
    http.add_connector(0, "127.0.0.1")
    http.add_stop_listener(lambda: calls.append("stopped"))
    http.start()
    assert http.is_running

    http.stop()
    http.stop()

    assert not http.is_running
    assert http.await_termination(timeout=1)
    assert calls == ["stopped"]


def test_await_termination_times_out_while_running(http) -> None:
    http.add_connector(0, "127.0.0.1")
    http.start()
    assert http.await_termination(timeout=0.05) is False
