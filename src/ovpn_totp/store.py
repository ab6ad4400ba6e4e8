"""Durable per-user TOTP secrets, keyed by username."""

from __future__ import annotations

import logging

from cryptography.exceptions import InvalidTag

from ovpn_totp import crypto
from ovpn_totp.db import Database
from ovpn_totp.errors import StorageError
from ovpn_totp.models import TotpRecord

logger = logging.getLogger(__name__)

SCHEMA = """CREATE TABLE IF NOT EXISTS totp_secrets (
    username TEXT PRIMARY KEY,
    secret   TEXT NOT NULL,
    enabled  INTEGER NOT NULL DEFAULT 0
)"""


class TotpStore:
    """Upsert-by-username persistence of TotpRecord rows.

    Every statement touches exactly one row and runs in its own transaction,
    so a record's secret and enabled flag are never observed half-written.
    With a ``master_key`` the secret column holds AES-GCM tokens instead
    of the raw base32 string.
    """

    def __init__(self, db: Database, *, master_key: str = "") -> None:
        self.db = db
        self.master_key = master_key

    @property
    def encrypts(self) -> bool:
        return bool(self.master_key)

    def init_schema(self) -> None:
        self.db.execute(SCHEMA)
        logger.debug("TOTP table initialized in users database")

    def put(self, username: str, secret: str, enabled: bool) -> None:
        """Insert the record or replace secret and enabled together."""
        if self.encrypts:
            try:
                stored = crypto.seal(self._key(), secret)
            except ValueError as exc:
                raise StorageError(f"Could not encrypt TOTP secret for {username!r}: {exc}") from exc
        else:
            stored = secret
        self.db.execute(
            """INSERT INTO totp_secrets (username, secret, enabled)
               VALUES (%s, %s, %s)
               ON CONFLICT (username) DO UPDATE
               SET secret = excluded.secret, enabled = excluded.enabled""",
            (username, stored, int(enabled)),
        )

    def get(self, username: str) -> TotpRecord | None:
        row = self.db.execute_one(
            "SELECT username, secret, enabled FROM totp_secrets WHERE username = %s",
            (username,),
        )
        if row is None:
            return None
        stored = row["secret"]
        return TotpRecord(
            username=row["username"],
            secret=self._decode(stored, username) if self.encrypts else stored,
            enabled=row["enabled"] == 1,
            stored_secret=stored,
        )

    def delete(self, username: str) -> bool:
        """Remove the record. Returns False if there was nothing to remove."""
        return self.db.execute_count("DELETE FROM totp_secrets WHERE username = %s", (username,)) > 0

    def set_enabled(self, username: str, value: bool, *, stored_secret: str | None = None) -> bool:
        """Update only the enabled flag. Returns False if no row matched.

        With ``stored_secret`` the update applies only while the row still
        holds that exact column value, so a concurrent re-enroll wins.
        """
        if stored_secret is None:
            updated = self.db.execute_count(
                "UPDATE totp_secrets SET enabled = %s WHERE username = %s",
                (int(value), username),
            )
        else:
            updated = self.db.execute_count(
                "UPDATE totp_secrets SET enabled = %s WHERE username = %s AND secret = %s",
                (int(value), username, stored_secret),
            )
        if not updated:
            logger.warning("No matching TOTP record for %s; enabled flag left unchanged", username)
        return updated > 0

    def _key(self) -> bytes:
        try:
            return crypto.load_key(self.master_key)
        except ValueError as exc:
            raise StorageError(f"Invalid TOTP master key: {exc}") from exc

    def _decode(self, token: str, username: str) -> str:
        key = self._key()
        try:
            return crypto.unseal(key, token)
        except (InvalidTag, ValueError) as exc:
            raise StorageError(f"Stored TOTP secret for {username!r} could not be decrypted") from exc
