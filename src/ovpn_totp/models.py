"""Pydantic models for data flowing between the store, engine and enrollment flow."""

from __future__ import annotations

import base64
from enum import StrEnum

from pydantic import BaseModel, Field


class EnrollmentState(StrEnum):
    ABSENT = "absent"
    PENDING = "pending"
    ACTIVE = "active"


class TotpRecord(BaseModel):
    """One row of totp_secrets.

    ``stored_secret`` is the column value as written (an AES-GCM token when
    the store encrypts), used to make activation conditional on it.
    """

    username: str
    secret: str
    enabled: bool = False
    stored_secret: str | None = Field(default=None, repr=False)

    @property
    def state(self) -> EnrollmentState:
        return EnrollmentState.ACTIVE if self.enabled else EnrollmentState.PENDING


class TotpKey(BaseModel):
    """A freshly generated secret bound to its issuer and account labels."""

    secret: str
    issuer: str
    account_name: str
    provisioning_uri: str


class Enrollment(BaseModel):
    """Result of starting enrollment: what the user needs to scan."""

    username: str
    secret: str
    provisioning_uri: str
    qr_png: bytes = Field(repr=False)

    @property
    def qr_png_base64(self) -> str:
        return base64.b64encode(self.qr_png).decode()
