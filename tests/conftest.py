"""Shared pytest fixtures for composesync tests"""

from pathlib import Path

import pytest

from composesync.config import Config
from composesync.identity import source_id


@pytest.fixture
def state_dir(tmp_path):
    """State root for snapshots, clones and the run lock"""
    path = tmp_path / "state-root"
    path.mkdir()
    return path


@pytest.fixture
def make_config(state_dir):
    """Build a Config rooted in the temporary state directory"""
    def _make(sources, **overrides):
        return Config(sources=list(sources), state_dir=str(state_dir), **overrides)
    return _make


@pytest.fixture
def uid():
    """Unit id of a unit name in a source address"""
    def _uid(name: str, address: str) -> str:
        return f"{name}-{source_id(address)}"
    return _uid


@pytest.fixture
def source_dirs(tmp_path):
    """Factory for plain (non-git) source directories"""
    root = tmp_path / "plain-sources"

    def _make(name: str) -> Path:
        path = root / name
        path.mkdir(parents=True)
        return path
    return _make
