"""Pydantic models for dxt-sign."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class SignatureStatus(str, Enum):
    """Trust verdict for a packed extension."""

    signed = "signed"
    self_signed = "self-signed"
    unsigned = "unsigned"


class CertificateSummary(BaseModel):
    """Display-oriented view of an X.509 certificate."""

    subject: str
    issuer: str
    serial_number: str  # Hex encoded
    valid_from: datetime
    valid_to: datetime
    fingerprint: str = Field(min_length=64, max_length=64)
    key_algorithm: str
    key_size: int | None = None
    self_issued: bool = False


class VerificationResult(BaseModel):
    """Outcome of verifying a packed extension's signature.

    Only ``signed`` and ``self-signed`` results carry signer details; an
    ``unsigned`` result never does, whether the file had no signature or a
    broken one.
    """

    status: SignatureStatus
    publisher: str | None = None
    issuer: str | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    fingerprint: str | None = None

    @model_validator(mode="after")
    def _details_match_status(self) -> VerificationResult:
        details = (
            self.publisher,
            self.issuer,
            self.valid_from,
            self.valid_to,
            self.fingerprint,
        )
        if self.status is SignatureStatus.unsigned:
            if any(value is not None for value in details):
                raise ValueError("unsigned results cannot carry signer details")
        elif any(value is None for value in details):
            raise ValueError(f"{self.status.value} results require signer details")
        return self

    @property
    def is_signed(self) -> bool:
        """True for ``signed`` and ``self-signed`` verdicts."""
        return self.status is not SignatureStatus.unsigned


__all__ = [
    "CertificateSummary",
    "SignatureStatus",
    "VerificationResult",
]
