"""Per-user TOTP enrollment: enable, verify, disable, status.

States: ABSENT (no record) -> PENDING (enabled=0) -> ACTIVE (enabled=1).
Starting enrollment always replaces whatever the user had before.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ovpn_totp import db
from ovpn_totp.auth import totp
from ovpn_totp.config import Settings, settings
from ovpn_totp.errors import NotEnrolledError
from ovpn_totp.models import Enrollment, EnrollmentState
from ovpn_totp.store import TotpStore

logger = logging.getLogger(__name__)


class EnrollmentService:

    def __init__(
        self,
        store: TotpStore,
        *,
        issuer: str = "ovpn-admin",
        valid_window: int = 1,
        qr_size: int = totp.DEFAULT_QR_SIZE,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.valid_window = valid_window
        self.qr_size = qr_size

    def start_enroll(self, username: str) -> Enrollment:
        # Generate and render before writing so a failure leaves the old record intact.
        key = totp.generate_secret(self.issuer, username)
        qr_png = totp.render_enrollment_image(key, size=self.qr_size)
        self.store.put(username, key.secret, enabled=False)
        logger.info("TOTP enrollment started for %s", username)
        return Enrollment(
            username=username,
            secret=key.secret,
            provisioning_uri=key.provisioning_uri,
            qr_png=qr_png,
        )

    def verify(self, username: str, code: str, now: datetime | None = None) -> bool:
        """Check a code; the first success activates a pending enrollment.

        Raises NotEnrolledError if the user has no record at all.
        """
        record = self.store.get(username)
        if record is None:
            raise NotEnrolledError(username)

        if not totp.verify(record.secret, code, now=now, valid_window=self.valid_window):
            logger.info("TOTP verification failed for %s", username)
            return False

        if not record.enabled:
            if not self.store.set_enabled(username, True, stored_secret=record.stored_secret):
                # The row changed after the read: deleted, or replaced by a new enrollment.
                if self.store.get(username) is None:
                    raise NotEnrolledError(username)
                logger.info("TOTP verification for %s superseded by a new enrollment", username)
                return False
            logger.info("TOTP activated for %s", username)
        return True

    def disable(self, username: str) -> None:
        if self.store.delete(username):
            logger.info("TOTP disabled for %s", username)

    def admin_disable(self, username: str) -> None:
        """Disable on behalf of another user. Authorization is the caller's job."""
        if self.store.delete(username):
            logger.info("TOTP disabled for %s by administrator", username)

    def user_deleted(self, username: str) -> None:
        """Hook for the panel's user-deletion flow."""
        self.disable(username)

    def status(self, username: str) -> bool:
        record = self.store.get(username)
        return record is not None and record.enabled

    def state(self, username: str) -> EnrollmentState:
        record = self.store.get(username)
        return EnrollmentState.ABSENT if record is None else record.state

    def is_required(self, username: str, config: Settings | None = None) -> bool:
        """Whether login for this user must present a TOTP code."""
        config = config or settings
        return config.totp_enabled and self.status(username)


_service: EnrollmentService | None = None


def build_service(database: db.Database, config: Settings | None = None) -> EnrollmentService:
    config = config or settings
    store = TotpStore(database, master_key=config.totp_master_key)
    return EnrollmentService(
        store,
        issuer=config.totp_issuer,
        valid_window=config.totp_valid_window,
        qr_size=config.totp_qr_size,
    )


def get_enrollment_service() -> EnrollmentService:
    """Process-wide service over the handle opened by db.init_db()."""
    global _service
    if _service is None:
        _service = build_service(db.get_db())
    return _service


def reset_enrollment_service() -> None:
    global _service
    _service = None


# Collaborator interface for the web panel's handlers.

def enable_totp(username: str) -> Enrollment:
    return get_enrollment_service().start_enroll(username)


def verify_totp(username: str, code: str) -> bool:
    return get_enrollment_service().verify(username, code)


def disable_totp(username: str) -> None:
    get_enrollment_service().disable(username)


def admin_disable_totp(username: str) -> None:
    get_enrollment_service().admin_disable(username)


def get_totp_status(username: str) -> bool:
    return get_enrollment_service().status(username)


def on_user_deleted(username: str) -> None:
    get_enrollment_service().user_deleted(username)
