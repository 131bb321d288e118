"""Trusted root store and trust classification for signed extensions."""

from __future__ import annotations

import logging
import ssl
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization

from dxt_sign.models import SignatureStatus
from dxt_sign.policy import (
    is_ca,
    is_self_issued,
    is_within_validity,
    meets_minimum_strength,
)

logger = logging.getLogger(__name__)

_MAX_CHAIN_DEPTH = 10

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def fingerprint(certificate: x509.Certificate) -> str:
    """Hex-encoded SHA-256 digest of the certificate's DER encoding."""
    return certificate.fingerprint(hashes.SHA256()).hex()


def _identity(certificate: x509.Certificate) -> tuple[bytes, bytes]:
    """Subject name plus public key; re-issued copies of a root share it."""
    try:
        spki = certificate.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    except (UnsupportedAlgorithm, ValueError):
        spki = certificate.public_bytes(serialization.Encoding.DER)
    return certificate.subject.public_bytes(), spki


def _issued_by(child: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        child.verify_directly_issued_by(issuer)
    except (InvalidSignature, TypeError, UnsupportedAlgorithm, ValueError):
        return False
    return True


def is_self_signed(certificate: x509.Certificate) -> bool:
    """True if *certificate* is self-issued and its signature verifies under its own key."""
    return is_self_issued(certificate) and _issued_by(certificate, certificate)


def _read_pem_bundle(path: Path) -> list[x509.Certificate]:
    return x509.load_pem_x509_certificates(path.read_bytes())


# ---------------------------------------------------------------------------
# TrustStore
# ---------------------------------------------------------------------------


class TrustStore:
    """Set of root certificates treated as trust anchors.

    Pass ``bundle_path`` to back the store with a PEM bundle: existing roots
    are loaded from it and every mutation is written back immediately.
    """

    def __init__(
        self,
        roots: Iterable[x509.Certificate] = (),
        bundle_path: str | None = None,
    ) -> None:
        self._bundle_path = Path(bundle_path) if bundle_path else None
        self._roots: dict[str, x509.Certificate] = {}

        for root in roots:
            self._roots[fingerprint(root)] = root
        if self._bundle_path and self._bundle_path.exists():
            self._load()

    @classmethod
    def from_system(cls) -> TrustStore:
        """Load the roots the host platform trusts for TLS."""
        context = ssl.create_default_context()
        roots: list[x509.Certificate] = []
        for der in context.get_ca_certs(binary_form=True):
            try:
                roots.append(x509.load_der_x509_certificate(der))
            except ValueError as exc:
                logger.debug("Skipping unparsable platform root: %s", exc)

        capath = ssl.get_default_verify_paths().capath
        if capath and Path(capath).is_dir():
            for entry in sorted(Path(capath).iterdir()):
                if not entry.is_file():
                    continue
                try:
                    roots.extend(_read_pem_bundle(entry))
                except (OSError, ValueError):
                    continue

        store = cls(roots)
        logger.debug("Loaded %d platform trust roots", len(store))
        return store

    @classmethod
    def from_pem_bundle(cls, path: str) -> TrustStore:
        """Load roots from a PEM bundle without writing back to it."""
        return cls(_read_pem_bundle(Path(path)))

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def add_root(self, certificate: x509.Certificate) -> None:
        """Add (or re-add) *certificate* as a trust anchor."""
        self._roots[fingerprint(certificate)] = certificate
        self._save()

    def remove_root(self, root_fingerprint: str) -> None:
        """Remove the root with the given SHA-256 fingerprint.

        Raises:
            KeyError: if no such root is in the store.
        """
        if root_fingerprint not in self._roots:
            raise KeyError(f"Root not found: {root_fingerprint}")
        del self._roots[root_fingerprint]
        self._save()

    def merge(self, other: TrustStore) -> None:
        """Add every root of *other* to this store."""
        for root in other.roots():
            self._roots[fingerprint(root)] = root
        self._save()

    def roots(self) -> list[x509.Certificate]:
        """Return all trust anchors."""
        return list(self._roots.values())

    def issuers_of(self, certificate: x509.Certificate) -> list[x509.Certificate]:
        """Roots whose subject matches *certificate*'s issuer name."""
        return [
            root for root in self._roots.values() if root.subject == certificate.issuer
        ]

    def __contains__(self, certificate: object) -> bool:
        if not isinstance(certificate, x509.Certificate):
            return False
        identity = _identity(certificate)
        return any(_identity(root) == identity for root in self._roots.values())

    def __len__(self) -> int:
        return len(self._roots)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self) -> None:
        if self._bundle_path is None:
            return
        self._bundle_path.parent.mkdir(parents=True, exist_ok=True)
        self._bundle_path.write_bytes(
            b"".join(
                root.public_bytes(serialization.Encoding.PEM)
                for root in self._roots.values()
            )
        )

    def _load(self) -> None:
        if self._bundle_path is None or not self._bundle_path.exists():
            return
        for root in _read_pem_bundle(self._bundle_path):
            self._roots[fingerprint(root)] = root


# ---------------------------------------------------------------------------
# TrustClassifier
# ---------------------------------------------------------------------------


class TrustClassifier:
    """Decide how far a cryptographically valid signer certificate is trusted.

    The classifier never looks at the signature itself; the caller must have
    verified it and applied the key-strength policy to the certificates it
    passes in.
    """

    def __init__(self, trust_store: TrustStore, at: datetime | None = None) -> None:
        self._store = trust_store
        self._at = at

    def classify(
        self,
        leaf: x509.Certificate,
        chain: Sequence[x509.Certificate] = (),
    ) -> SignatureStatus:
        """Return ``signed``, ``self-signed`` or ``unsigned`` for *leaf*.

        ``unsigned`` here means the signer is neither chained to a trusted
        root nor self-signed.
        """
        if not is_within_validity(leaf, self._at):
            logger.debug("Signer certificate is outside its validity window")
            return SignatureStatus.unsigned
        if self.build_chain(leaf, chain) is not None:
            return SignatureStatus.signed
        if is_self_signed(leaf):
            return SignatureStatus.self_signed
        logger.debug("Signer certificate does not chain to a trusted root")
        return SignatureStatus.unsigned

    def build_chain(
        self,
        leaf: x509.Certificate,
        chain: Sequence[x509.Certificate] = (),
    ) -> list[x509.Certificate] | None:
        """Return ``[leaf, ..., trusted_root]`` or ``None`` if no path exists.

        The leaf itself never counts as a trust anchor, even when a copy of it
        is in the store.
        """
        path = [leaf]
        seen = {_identity(leaf)}
        current = leaf
        for _ in range(_MAX_CHAIN_DEPTH):
            anchor = self._find_issuer(current, self._store.issuers_of(current), seen)
            if anchor is not None:
                path.append(anchor)
                return path
            issuer = self._find_issuer(current, chain, seen)
            if issuer is None:
                return None
            path.append(issuer)
            seen.add(_identity(issuer))
            current = issuer
        return None

    def _find_issuer(
        self,
        child: x509.Certificate,
        candidates: Iterable[x509.Certificate],
        seen: set[tuple[bytes, bytes]],
    ) -> x509.Certificate | None:
        for candidate in candidates:
            if candidate.subject != child.issuer or _identity(candidate) in seen:
                continue
            if not is_ca(candidate):
                continue
            if not is_within_validity(candidate, self._at):
                continue
            if not meets_minimum_strength(candidate):
                logger.debug(
                    "Ignoring issuer %s: key fails strength policy",
                    candidate.subject.rfc4514_string(),
                )
                continue
            if _issued_by(child, candidate):
                return candidate
        return None


__all__ = [
    "TrustClassifier",
    "TrustStore",
    "fingerprint",
    "is_self_signed",
]
