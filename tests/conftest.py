"""Shared fixtures: a throwaway SQLite users database per test."""

from __future__ import annotations

import pytest

from ovpn_totp.db import SqliteDatabase
from ovpn_totp.enrollment import EnrollmentService
from ovpn_totp.store import TotpStore


@pytest.fixture
def database(tmp_path):
    db = SqliteDatabase(str(tmp_path / "users.db"))
    yield db
    db.close()


@pytest.fixture
def store(database):
    s = TotpStore(database)
    s.init_schema()
    return s


@pytest.fixture
def service(store):
    return EnrollmentService(store, issuer="ovpn-admin")
