"""TOTP (Time-based One-Time Password) engine for second-factor login.

Uses pyotp for secret generation and RFC 6238 validation, and qrcode/Pillow
to render the otpauth:// URI as an enrollment image. Nothing here touches
storage.
"""

from __future__ import annotations

import binascii
import io
from datetime import datetime

import pyotp
import qrcode
import qrcode.constants
import qrcode.exceptions
from PIL import Image

from ovpn_totp.errors import GenerationError, RenderError
from ovpn_totp.models import TotpKey

DEFAULT_QR_SIZE = 200


def generate_secret(issuer: str, account_name: str) -> TotpKey:
    """Generate a new TOTP secret (base32-encoded, 32 chars) for an account."""
    try:
        secret = pyotp.random_base32()
    except (NotImplementedError, OSError, ValueError) as exc:
        raise GenerationError(f"Could not generate TOTP secret: {exc}") from exc
    return TotpKey(
        secret=secret,
        issuer=issuer,
        account_name=account_name,
        provisioning_uri=provisioning_uri(secret, account_name, issuer),
    )


def provisioning_uri(secret: str, account_name: str, issuer: str) -> str:
    """Get the otpauth:// URI for QR code enrollment."""
    return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=issuer)


def render_enrollment_image(key: TotpKey, size: int = DEFAULT_QR_SIZE) -> bytes:
    """Render the key's provisioning URI as a ``size`` x ``size`` PNG."""
    try:
        qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=4)
        qr.add_data(key.provisioning_uri)
        qr.make(fit=True)
        img = qr.make_image().get_image()
        img = img.resize((size, size), Image.NEAREST)
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
    except (qrcode.exceptions.DataOverflowError, OSError, ValueError) as exc:
        raise RenderError(f"Could not render enrollment QR code: {exc}") from exc
    return buffer.getvalue()


def verify(
    secret: str,
    code: str,
    now: datetime | None = None,
    valid_window: int = 1,
) -> bool:
    """Verify a TOTP code against a secret (allows +-valid_window steps).

    A malformed code or secret simply does not verify.
    """
    code = str(code).strip()
    if not code.isdigit():
        return False
    try:
        return pyotp.TOTP(secret).verify(code, for_time=now, valid_window=valid_window)
    except (binascii.Error, ValueError):
        return False


def current_code(secret: str, now: datetime | None = None) -> str:
    """Get the TOTP code for a secret at ``now`` (defaults to the current time)."""
    totp = pyotp.TOTP(secret)
    return totp.now() if now is None else totp.at(now)
