"""Shared fixtures for apix scenario tests."""

import json
import os

import pytest
from click.testing import CliRunner

from apix import core
from apix.context import ContextStore
from apix.executor import TransportResponse
from apix.history import HistoryStore

NOW = 1_800_000_000.0


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def global_apix_dir(tmp_path_factory, monkeypatch):
    """Override the global ~/.apix directory to a temp location."""
    fake_global = tmp_path_factory.mktemp("fake_home") / ".apix"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    return fake_global


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def store(state_dir):
    return ContextStore(state_dir, clock=lambda: NOW)


@pytest.fixture
def history(state_dir):
    return HistoryStore(state_dir)


def make_transport_response(
    status_code=200,
    body=None,
    headers=None,
    elapsed_ms=42.0,
    set_cookies=None,
    raw_text="",
):
    """Factory for mock TransportResponse objects."""
    r = TransportResponse()
    r.status_code = status_code
    r.headers = headers or {}
    r.body = body
    r.elapsed_ms = elapsed_ms
    r.set_cookies = [c if isinstance(c, tuple) else (c, None) for c in set_cookies or []]
    r.raw_text = raw_text or (
        json.dumps(body) if isinstance(body, dict | list) else str(body or "")
    )
    return r


@pytest.fixture
def tmp_project(tmp_path):
    """Create a temporary project directory and cd into it."""
    original = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(original)
