"""Shared test fixtures."""

from __future__ import annotations

import pytest

from storage import Storage


@pytest.fixture()
def db_path(tmp_path):
    return tmp_path / "jobs.db"


@pytest.fixture()
def store(db_path):
    db = Storage(db_path)
    db.initialize()
    yield db
    db.close()
