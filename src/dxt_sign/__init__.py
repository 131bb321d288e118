"""dxt-sign: Code signing and signature verification for packed desktop extensions."""

from dxt_sign.core import (
    CertificateLoader,
    ExtensionSigner,
    ExtensionVerifier,
    sign,
    unsign,
    verify,
)
from dxt_sign.exceptions import (
    ArchiveError,
    CertificateLoadError,
    DxtSignError,
    KeyMismatchError,
    MalformedSignatureError,
    PolicyError,
)
from dxt_sign.models import CertificateSummary, SignatureStatus, VerificationResult
from dxt_sign.policy import MINIMUM_RSA_KEY_SIZE, meets_minimum_strength
from dxt_sign.trust import TrustClassifier, TrustStore

__version__ = "0.1.0"

__all__ = [
    "MINIMUM_RSA_KEY_SIZE",
    "ArchiveError",
    "CertificateLoadError",
    "CertificateLoader",
    "CertificateSummary",
    "DxtSignError",
    "ExtensionSigner",
    "ExtensionVerifier",
    "KeyMismatchError",
    "MalformedSignatureError",
    "PolicyError",
    "SignatureStatus",
    "TrustClassifier",
    "TrustStore",
    "VerificationResult",
    "meets_minimum_strength",
    "sign",
    "unsign",
    "verify",
]
