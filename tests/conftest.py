import json
from pathlib import Path

import aiohttp
import pytest

from versync.process import ProcessResult

TAURI_CONF = """{
  "$schema": "https://schema.tauri.app/config/2",
  "productName": "mirror",
  "version": "0.1.0",
  "identifier": "com.mirror.app",
  "build": {
    "beforeDevCommand": "npm run dev",
    "frontendDist": "../dist"
  }
}
"""

CARGO_TOML = """[package]
name = "mirror"
version = "0.1.0"
description = "A Tauri App"
edition = "2021"

[dependencies]
serde = { version = "1", features = ["derive"] }
semver = "1.0"

[dependencies.reqwest]
version = "0.12"
"""


def write_package_json(root: Path, version: str):
    data = {"name": "mirror", "private": True, "version": version, "type": "module"}
    (root / "package.json").write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


@pytest.fixture
def tauri_project(tmp_path):
    """A project whose dependent manifests are at 0.1.0 and package.json at 0.2.0."""
    native = tmp_path / "src-tauri"
    native.mkdir()
    write_package_json(tmp_path, "0.2.0")
    (native / "tauri.conf.json").write_text(TAURI_CONF, encoding="utf-8")
    (native / "Cargo.toml").write_text(CARGO_TOML, encoding="utf-8")
    (native / "Cargo.lock").write_text("# lock\n", encoding="utf-8")
    return tmp_path


class FakeRunner:
    """Stands in for run_process; records every command."""

    def __init__(self, returncode=0, stderr="", exc=None):
        self.returncode = returncode
        self.stderr = stderr
        self.exc = exc
        self.calls = []

    async def __call__(self, command, cwd=None, timeout=None, capture_stderr=False):
        self.calls.append({"command": list(command), "cwd": cwd, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return ProcessResult(self.returncode, self.stderr)


@pytest.fixture
def fake_runner():
    return FakeRunner()


class FakeContent:
    def __init__(self, body: bytes):
        self.body = body

    async def iter_chunked(self, size):
        for i in range(0, len(self.body), size):
            yield self.body[i:i + size]


class FakeResponse:
    def __init__(self, status=200, json_data=None, text="", body=b"", headers=None, url=""):
        self.status = status
        self._json = json_data
        self._text = text
        self.headers = headers or {}
        self.url = url
        self.content = FakeContent(body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type=None):
        if isinstance(self._json, Exception):
            raise self._json
        return self._json

    async def text(self):
        return self._text

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientConnectionError(f"HTTP {self.status}")


class FakeSession:
    """Minimal aiohttp.ClientSession replacement serving canned responses by URL."""

    def __init__(self, routes, requests):
        self.routes = routes
        self.requests = requests

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def _respond(self, method, url):
        self.requests.append((method, url))
        response = self.routes.get((method, url), self.routes.get(url))
        if response is None:
            raise aiohttp.ClientConnectionError(f"no route for {url}")
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._respond("GET", url)

    def head(self, url, **kwargs):
        return self._respond("HEAD", url)


class FakeSessionFactory:
    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests = []

    def __call__(self, **kwargs):
        return FakeSession(self.routes, self.requests)


@pytest.fixture
def session_factory():
    return FakeSessionFactory()
