"""Fixtures for CLI and config tests."""

import os
from contextlib import contextmanager

import pytest
from sqlalchemy.orm import Session


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Drop OPMS_SYNC_* overrides and keep config discovery inside tmp_path."""
    for key in list(os.environ):
        if key.startswith("OPMS_SYNC_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Write a YAML config and point OPMS_SYNC_CONFIG_PATH at it."""

    def _write(text: str):
        path = tmp_path / "opms-sync.yaml"
        path.write_text(text)
        monkeypatch.setenv("OPMS_SYNC_CONFIG_PATH", str(path))
        return path

    return _write


@pytest.fixture
def cli_db(catalog: Session, monkeypatch) -> Session:
    """Route the CLI's sessions to the seeded test database."""

    @contextmanager
    def _context():
        yield catalog
        catalog.commit()

    monkeypatch.setattr("opms_sync.cli.main.get_db_context", _context)
    return catalog
