"""Exception types raised by dxt-sign."""

from __future__ import annotations


class DxtSignError(Exception):
    """Base class for every error raised by this package."""


class PolicyError(DxtSignError):
    """A certificate's key does not meet the minimum strength policy."""


class KeyMismatchError(DxtSignError):
    """The private key does not belong to the signing certificate."""


class CertificateLoadError(DxtSignError):
    """Certificate or private key material could not be parsed."""


class ArchiveError(DxtSignError):
    """The extension archive cannot be read or extracted safely."""


class MalformedSignatureError(DxtSignError):
    """A signature block is present but cannot be trusted.

    Only used inside :class:`~dxt_sign.core.ExtensionVerifier`; callers always
    see an ``unsigned`` verdict instead.
    """


__all__ = [
    "ArchiveError",
    "CertificateLoadError",
    "DxtSignError",
    "KeyMismatchError",
    "MalformedSignatureError",
    "PolicyError",
]
