"""Certificate policy checks shared by signing and verification."""

from __future__ import annotations

from datetime import UTC, datetime

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

from dxt_sign.exceptions import PolicyError

MINIMUM_RSA_KEY_SIZE = 2048


def _strength_violation(certificate: x509.Certificate) -> str | None:
    """Describe why *certificate*'s key is too weak, or ``None`` if it is fine."""
    try:
        public_key = certificate.public_key()
    except (UnsupportedAlgorithm, ValueError) as exc:
        return f"Unreadable public key: {exc}"

    if isinstance(public_key, rsa.RSAPublicKey):
        if public_key.key_size < MINIMUM_RSA_KEY_SIZE:
            return (
                f"RSA key size {public_key.key_size} too small for code signing. "
                f"Minimum required is {MINIMUM_RSA_KEY_SIZE} bits"
            )
        return None
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return None
    return (
        f"Unsupported key algorithm: {type(public_key).__name__}. "
        "Only RSA and ECDSA keys can be used for code signing."
    )


def meets_minimum_strength(certificate: x509.Certificate) -> bool:
    """Return True if *certificate*'s public key meets the strength floor.

    RSA keys need a modulus of at least :data:`MINIMUM_RSA_KEY_SIZE` bits.
    EC keys are accepted.  Any other key algorithm fails.
    """
    return _strength_violation(certificate) is None


def require_minimum_strength(certificate: x509.Certificate) -> None:
    """Raise :class:`PolicyError` unless *certificate* meets the strength floor."""
    violation = _strength_violation(certificate)
    if violation is not None:
        raise PolicyError(violation)


def key_description(certificate: x509.Certificate) -> tuple[str, int | None]:
    """Return ``(algorithm, key_size)`` for display, e.g. ``("RSA", 2048)``."""
    public_key = certificate.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        return "RSA", public_key.key_size
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return f"EC ({public_key.curve.name})", public_key.key_size
    return type(public_key).__name__, None


def is_self_issued(certificate: x509.Certificate) -> bool:
    """True when the certificate's issuer name equals its subject name."""
    return certificate.issuer == certificate.subject


def is_ca(certificate: x509.Certificate) -> bool:
    """True if *certificate* may issue other certificates.

    Certificates without a basic constraints extension are only treated as
    CAs when they are self-issued (legacy v1 roots).
    """
    try:
        constraints = certificate.extensions.get_extension_for_class(
            x509.BasicConstraints
        ).value
    except x509.ExtensionNotFound:
        return is_self_issued(certificate)
    except ValueError:
        return False
    return constraints.ca


def is_within_validity(
    certificate: x509.Certificate, at: datetime | None = None
) -> bool:
    """True if *at* (default: now) lies inside the certificate's validity window."""
    moment = at or datetime.now(tz=UTC)
    return certificate.not_valid_before_utc <= moment <= certificate.not_valid_after_utc


def is_code_signing(certificate: x509.Certificate) -> bool:
    """True unless the certificate's extensions rule out code signing.

    Key usage, when present, must allow digital signatures; extended key
    usage, when present, must include the code-signing purpose.
    """
    try:
        extensions = certificate.extensions
    except ValueError:
        return False

    try:
        key_usage = extensions.get_extension_for_class(x509.KeyUsage).value
    except x509.ExtensionNotFound:
        pass
    else:
        if not key_usage.digital_signature:
            return False

    try:
        ext_key_usage = extensions.get_extension_for_class(
            x509.ExtendedKeyUsage
        ).value
    except x509.ExtensionNotFound:
        return True
    return ExtendedKeyUsageOID.CODE_SIGNING in ext_key_usage


__all__ = [
    "MINIMUM_RSA_KEY_SIZE",
    "is_ca",
    "is_code_signing",
    "is_self_issued",
    "is_within_validity",
    "key_description",
    "meets_minimum_strength",
    "require_minimum_strength",
]
