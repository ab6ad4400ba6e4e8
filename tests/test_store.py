"""Tests for the totp_secrets store."""

from __future__ import annotations

import threading

import pytest

from ovpn_totp.crypto import generate_key
from ovpn_totp.db import Database, SqliteDatabase, connect, sqlite_path
from ovpn_totp.errors import StorageError
from ovpn_totp.models import EnrollmentState
from ovpn_totp.store import TotpStore


def test_get_missing_returns_none(store):
    assert store.get("nobody") is None


def test_put_and_get(store):
    store.put("alice", "SECRETA", enabled=False)
    record = store.get("alice")
    assert record is not None
    assert record.username == "alice"
    assert record.secret == "SECRETA"
    assert record.enabled is False
    assert record.state == EnrollmentState.PENDING


def test_put_replaces_whole_record(store):
    store.put("alice", "OLD", enabled=True)
    store.put("alice", "NEW", enabled=False)
    record = store.get("alice")
    assert record.secret == "NEW"
    assert record.enabled is False
    rows = store.db.execute("SELECT COUNT(*) AS cnt FROM totp_secrets")
    assert rows[0]["cnt"] == 1


def test_enabled_stored_as_integer(store):
    store.put("alice", "S", enabled=True)
    row = store.db.execute_one("SELECT enabled FROM totp_secrets WHERE username = %s", ("alice",))
    assert row["enabled"] == 1


def test_set_enabled(store):
    store.put("alice", "S", enabled=False)
    assert store.set_enabled("alice", True) is True
    record = store.get("alice")
    assert record.enabled is True
    assert record.secret == "S"
    assert record.state == EnrollmentState.ACTIVE


def test_set_enabled_missing_record(store):
    assert store.set_enabled("nobody", True) is False
    assert store.get("nobody") is None


def test_delete(store):
    store.put("alice", "S", enabled=True)
    assert store.delete("alice") is True
    assert store.get("alice") is None


def test_delete_missing_is_noop(store):
    assert store.delete("nobody") is False


def test_records_are_independent(store):
    store.put("alice", "A", enabled=True)
    store.put("bob", "B", enabled=False)
    store.delete("bob")
    assert store.get("alice").secret == "A"


def test_init_schema_idempotent(store):
    store.put("alice", "S", enabled=True)
    store.init_schema()
    assert store.get("alice").enabled is True


def test_missing_table_raises_storage_error(database):
    store = TotpStore(database)
    with pytest.raises(StorageError):
        store.get("alice")


def test_concurrent_writes(store):
    def worker(name: str) -> None:
        for i in range(20):
            store.put(name, f"SECRET{i}", enabled=i % 2 == 0)

    threads = [threading.Thread(target=worker, args=(f"user{n}",)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for n in range(8):
        record = store.get(f"user{n}")
        assert record.secret == "SECRET19"
        assert record.enabled is False


def test_concurrent_writes_same_username(store):
    # Each writer pairs its secret with a fixed flag; the survivor must keep its pair.
    def worker(n: int) -> None:
        for _ in range(25):
            store.put("alice", f"SECRET{n}", enabled=n % 2 == 0)
            store.get("alice")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    record = store.get("alice")
    n = int(record.secret.removeprefix("SECRET"))
    assert record.enabled is (n % 2 == 0)
    rows = store.db.execute("SELECT COUNT(*) AS cnt FROM totp_secrets")
    assert rows[0]["cnt"] == 1


def test_set_enabled_guarded_by_stored_secret(store):
    store.put("alice", "OLD", enabled=False)
    stale = store.get("alice")
    store.put("alice", "NEW", enabled=False)
    assert store.set_enabled("alice", True, stored_secret=stale.stored_secret) is False
    assert store.get("alice").enabled is False

    current = store.get("alice")
    assert store.set_enabled("alice", True, stored_secret=current.stored_secret) is True
    assert store.get("alice").enabled is True


@pytest.fixture
def encrypted_store(database):
    s = TotpStore(database, master_key=generate_key())
    s.init_schema()
    return s


def test_encrypted_secret_at_rest(encrypted_store):
    encrypted_store.put("alice", "JBSWY3DPEHPK3PXP", enabled=False)
    raw = encrypted_store.db.execute_one("SELECT secret FROM totp_secrets WHERE username = %s", ("alice",))
    assert raw["secret"] != "JBSWY3DPEHPK3PXP"
    assert encrypted_store.get("alice").secret == "JBSWY3DPEHPK3PXP"


def test_undecryptable_secret_raises_storage_error(encrypted_store):
    encrypted_store.db.execute(
        "INSERT INTO totp_secrets (username, secret, enabled) VALUES (%s, %s, %s)",
        ("alice", "JBSWY3DPEHPK3PXP", 1),
    )
    with pytest.raises(StorageError):
        encrypted_store.get("alice")


def test_encrypted_record_exposes_stored_token(encrypted_store):
    encrypted_store.put("alice", "JBSWY3DPEHPK3PXP", enabled=False)
    record = encrypted_store.get("alice")
    raw = encrypted_store.db.execute_one("SELECT secret FROM totp_secrets WHERE username = %s", ("alice",))
    assert record.stored_secret == raw["secret"]
    assert encrypted_store.set_enabled("alice", True, stored_secret=record.stored_secret) is True


@pytest.mark.parametrize("master_key", ["not*base64!", "c2hvcnQ="])
def test_bad_master_key_raises_storage_error(database, master_key):
    s = TotpStore(database, master_key=master_key)
    s.init_schema()
    with pytest.raises(StorageError, match="master key"):
        s.put("alice", "JBSWY3DPEHPK3PXP", enabled=False)
    assert TotpStore(database).get("alice") is None


@pytest.mark.parametrize(
    "url, path",
    [
        ("sqlite:///./users.db", "./users.db"),
        ("sqlite:////etc/openvpn/easyrsa/pki/users.db", "/etc/openvpn/easyrsa/pki/users.db"),
        ("sqlite:///:memory:", ":memory:"),
        ("sqlite://", ":memory:"),
    ],
)
def test_sqlite_path(url, path):
    assert sqlite_path(url) == path


def test_connect_sqlite(tmp_path):
    db = connect(f"sqlite:///{tmp_path / 'users.db'}")
    try:
        assert isinstance(db, SqliteDatabase)
        assert db.execute_one("SELECT 1 AS ok") == {"ok": 1}
    finally:
        db.close()


def test_connect_unsupported_scheme():
    with pytest.raises(ValueError):
        connect("mysql://localhost/users")


def test_database_interface_is_abstract():
    with pytest.raises(TypeError):
        Database()

    class Partial(Database):
        def close(self) -> None:
            pass

    with pytest.raises(TypeError):
        Partial()
