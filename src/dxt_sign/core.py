"""Signing and verification logic for packed extensions."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import shutil
import tempfile
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

from asn1crypto import cms
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from dxt_sign import block
from dxt_sign.exceptions import (
    CertificateLoadError,
    KeyMismatchError,
    MalformedSignatureError,
)
from dxt_sign.models import CertificateSummary, SignatureStatus, VerificationResult
from dxt_sign.policy import (
    is_code_signing,
    is_self_issued,
    key_description,
    meets_minimum_strength,
    require_minimum_strength,
)
from dxt_sign.trust import TrustClassifier, TrustStore, fingerprint

logger = logging.getLogger(__name__)

SigningKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

SELF_SIGNED_SUBJECT = x509.Name(
    [
        x509.NameAttribute(NameOID.COMMON_NAME, "DXT Self-Signed Certificate"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "DXT Extensions"),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
    ]
)

_DIGEST_ALGORITHMS: dict[str, type[hashes.HashAlgorithm]] = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _write_atomic(path: Path, data: bytes) -> None:
    """Replace *path* with *data* via a temporary file in the same directory."""
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        if path.exists():
            shutil.copymode(path, tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def _public_key_bytes(public_key: object) -> bytes:
    return public_key.public_bytes(  # type: ignore[attr-defined]
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _display_name(name: x509.Name) -> str:
    """Common name when present, otherwise the RFC 4514 string."""
    common_names = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if common_names:
        return str(common_names[0].value)
    return name.rfc4514_string()


def describe(certificate: x509.Certificate) -> CertificateSummary:
    """Build a :class:`CertificateSummary` for display."""
    algorithm, key_size = key_description(certificate)
    return CertificateSummary(
        subject=certificate.subject.rfc4514_string(),
        issuer=certificate.issuer.rfc4514_string(),
        serial_number=format(certificate.serial_number, "x"),
        valid_from=certificate.not_valid_before_utc,
        valid_to=certificate.not_valid_after_utc,
        fingerprint=fingerprint(certificate),
        key_algorithm=algorithm,
        key_size=key_size,
        self_issued=is_self_issued(certificate),
    )


# ---------------------------------------------------------------------------
# CertificateLoader
# ---------------------------------------------------------------------------


class CertificateLoader:
    """Load certificates and private keys, and create development identities."""

    def load_certificate(self, path: str) -> x509.Certificate:
        """Read a PEM (or DER) certificate from *path*."""
        data = Path(path).read_bytes()
        try:
            return x509.load_pem_x509_certificate(data)
        except ValueError:
            pass
        try:
            return x509.load_der_x509_certificate(data)
        except ValueError as exc:
            raise CertificateLoadError(
                f"Cannot parse certificate '{path}': {exc}"
            ) from exc

    def load_certificates(self, paths: Sequence[str]) -> list[x509.Certificate]:
        """Load every certificate in *paths*, preserving order."""
        return [self.load_certificate(path) for path in paths]

    def load_private_key(
        self, path: str, password: bytes | None = None
    ) -> SigningKey:
        """Read a PEM private key from *path*.

        Args:
            path: Filesystem path to the PEM-encoded private key.
            password: Passphrase for encrypted keys, ``None`` otherwise.

        Raises:
            CertificateLoadError: if the key cannot be decrypted or parsed, or
                is neither RSA nor EC.
        """
        pem_bytes = Path(path).read_bytes()
        try:
            key = serialization.load_pem_private_key(pem_bytes, password=password)
        except (TypeError, UnsupportedAlgorithm, ValueError) as exc:
            raise CertificateLoadError(
                f"Cannot load private key '{path}': {exc}"
            ) from exc
        if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise CertificateLoadError(
                f"Unsupported key type: {type(key).__name__}. "
                "Only RSA and ECDSA keys can sign extensions."
            )
        return key

    def create_self_signed(
        self,
        cert_path: str,
        key_path: str,
        key_size: int = 4096,
        days: int = 3650,
    ) -> tuple[x509.Certificate, rsa.RSAPrivateKey]:
        """Create a self-signed code-signing certificate for local development.

        The key is written unencrypted to *key_path* (mode 0o600 on POSIX) and
        the certificate to *cert_path*, both PEM.  Parent directories are
        created if needed.
        """
        key_file = Path(key_path)
        cert_file = Path(cert_path)
        key_file.parent.mkdir(parents=True, exist_ok=True)
        cert_file.parent.mkdir(parents=True, exist_ok=True)

        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        now = datetime.now(tz=UTC)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(SELF_SIGNED_SUBJECT)
            .issuer_name(SELF_SIGNED_SUBJECT)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=days))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=True,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CODE_SIGNING]),
                critical=False,
            )
            .sign(private_key, hashes.SHA256())
        )

        key_file.write_bytes(
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        # Restrict private key permissions on POSIX
        if os.name == "posix":
            os.chmod(key_file, 0o600)
        cert_file.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))

        logger.info("Created self-signed certificate at %s", cert_file)
        return certificate, private_key


# ---------------------------------------------------------------------------
# ExtensionSigner
# ---------------------------------------------------------------------------


class ExtensionSigner:
    """Attach a detached CMS signature to packed extension bytes."""

    def sign(
        self,
        archive_bytes: bytes,
        certificate: x509.Certificate,
        private_key: SigningKey,
        intermediates: Sequence[x509.Certificate] = (),
    ) -> bytes:
        """Sign *archive_bytes* and return the archive with its signature block.

        Any signature block already on *archive_bytes* is replaced.

        Args:
            archive_bytes: The packed extension, signed or not.
            certificate: The signer's certificate.
            private_key: Private key matching *certificate*.
            intermediates: Extra certificates embedded so verifiers can build
                the chain without fetching anything.

        Raises:
            PolicyError: if the signer or an intermediate has a weak key.
                Raised before any signature is computed.
            KeyMismatchError: if *private_key* does not match *certificate*.
        """
        require_minimum_strength(certificate)
        for intermediate in intermediates:
            require_minimum_strength(intermediate)

        if _public_key_bytes(private_key.public_key()) != _public_key_bytes(
            certificate.public_key()
        ):
            raise KeyMismatchError(
                "Private key does not match the certificate's public key."
            )
        if not is_code_signing(certificate):
            logger.warning(
                "Certificate %s is not marked for code signing",
                certificate.subject.rfc4514_string(),
            )

        archive = block.strip(archive_bytes)

        builder = (
            pkcs7.PKCS7SignatureBuilder()
            .set_data(archive)
            .add_signer(certificate, private_key, hashes.SHA256())
        )
        for intermediate in intermediates:
            builder = builder.add_certificate(intermediate)
        signature = builder.sign(
            serialization.Encoding.DER,
            [pkcs7.PKCS7Options.DetachedSignature, pkcs7.PKCS7Options.Binary],
        )
        return block.attach(archive, signature)

    def sign_file(
        self,
        path: str,
        cert_path: str,
        key_path: str,
        intermediate_paths: Sequence[str] = (),
        password: bytes | None = None,
    ) -> None:
        """Sign the extension at *path* in place.

        The file is only replaced once the new contents are complete; a
        failure leaves it untouched.
        """
        target = Path(path)
        archive_bytes = target.read_bytes()

        loader = CertificateLoader()
        certificate = loader.load_certificate(cert_path)
        private_key = loader.load_private_key(key_path, password=password)
        intermediates = loader.load_certificates(intermediate_paths)

        signed = self.sign(archive_bytes, certificate, private_key, intermediates)
        _write_atomic(target, signed)
        logger.info("Signed %s as %s", target, _display_name(certificate.subject))

    def unsign(self, file_bytes: bytes) -> bytes:
        """Return *file_bytes* without its signature block."""
        return block.strip(file_bytes)

    def unsign_file(self, path: str) -> bool:
        """Remove the signature block from *path*.

        Returns:
            True if a block was removed, False if the file was not signed (in
            which case it is not rewritten).
        """
        target = Path(path)
        file_bytes = target.read_bytes()
        archive_bytes = self.unsign(file_bytes)
        if len(archive_bytes) == len(file_bytes):
            logger.info("%s has no signature block", target)
            return False
        _write_atomic(target, archive_bytes)
        logger.info("Removed signature from %s", target)
        return True


# ---------------------------------------------------------------------------
# ExtensionVerifier
# ---------------------------------------------------------------------------


class ExtensionVerifier:
    """Verify signature blocks and classify how far the signer is trusted.

    Args:
        trust_store: Trusted roots.  Defaults to the platform's roots.
        at: Moment used for certificate validity checks (default: now).
    """

    def __init__(
        self,
        trust_store: TrustStore | None = None,
        at: datetime | None = None,
    ) -> None:
        self._trust_store = (
            trust_store if trust_store is not None else TrustStore.from_system()
        )
        self._classifier = TrustClassifier(self._trust_store, at=at)

    def verify(self, file_bytes: bytes) -> VerificationResult:
        """Verify *file_bytes* and return the trust verdict.

        Never raises for missing or broken signatures; both yield an
        ``unsigned`` result.
        """
        try:
            leaf, chain = self._verify_signature(file_bytes)
        except MalformedSignatureError as exc:
            logger.debug("Treating extension as unsigned: %s", exc)
            return VerificationResult(status=SignatureStatus.unsigned)
        return self._result_for(leaf, chain)

    def inspect(
        self, file_bytes: bytes
    ) -> tuple[VerificationResult, list[CertificateSummary]]:
        """Verify *file_bytes* once and return the verdict with the signer chain.

        The chain is the same as :meth:`signer_chain` would return: empty for
        a missing or broken signature, otherwise signer first.
        """
        try:
            leaf, chain = self._verify_signature(file_bytes)
        except MalformedSignatureError as exc:
            logger.debug("Treating extension as unsigned: %s", exc)
            return VerificationResult(status=SignatureStatus.unsigned), []
        summaries = [describe(certificate) for certificate in (leaf, *chain)]
        return self._result_for(leaf, chain), summaries

    def verify_file(self, path: str) -> VerificationResult:
        """Read *path* and verify it.  I/O errors propagate unchanged."""
        return self.verify(Path(path).read_bytes())

    def signer_chain(self, file_bytes: bytes) -> list[CertificateSummary]:
        """Summaries of the signer and embedded certificates, signer first.

        Empty unless the signature verifies and every certificate passes the
        key-strength policy.  Trust is not evaluated.
        """
        try:
            leaf, chain = self._verify_signature(file_bytes)
        except MalformedSignatureError:
            return []
        return [describe(certificate) for certificate in (leaf, *chain)]

    def _result_for(
        self, leaf: x509.Certificate, chain: list[x509.Certificate]
    ) -> VerificationResult:
        status = self._classifier.classify(leaf, chain)
        if status is SignatureStatus.unsigned:
            return VerificationResult(status=SignatureStatus.unsigned)
        return VerificationResult(
            status=status,
            publisher=_display_name(leaf.subject),
            issuer=_display_name(leaf.issuer),
            valid_from=leaf.not_valid_before_utc,
            valid_to=leaf.not_valid_after_utc,
            fingerprint=fingerprint(leaf),
        )

    # ------------------------------------------------------------------
    # Signature checks
    # ------------------------------------------------------------------

    def _verify_signature(
        self, file_bytes: bytes
    ) -> tuple[x509.Certificate, list[x509.Certificate]]:
        found = block.locate(file_bytes)
        if found is None:
            raise MalformedSignatureError("no signature block")
        archive_bytes, payload = found

        try:
            signer_info, certificates = _parse_signed_data(payload)
            leaf = _find_signer_certificate(signer_info, certificates)
            digest_name = signer_info["digest_algorithm"]["algorithm"].native
            if digest_name not in _DIGEST_ALGORITHMS:
                raise MalformedSignatureError(
                    f"unsupported digest algorithm {digest_name}"
                )
            signed_attrs = signer_info["signed_attrs"]
            if not signed_attrs:
                raise MalformedSignatureError("no authenticated attributes")
            _check_message_digest(signed_attrs, archive_bytes, digest_name)
            _check_signature(signer_info, leaf, _DIGEST_ALGORITHMS[digest_name]())
        except (
            IndexError,
            KeyError,
            TypeError,
            UnsupportedAlgorithm,
            ValueError,
            x509.InvalidVersion,
        ) as exc:
            raise MalformedSignatureError(f"unreadable signature: {exc}") from exc

        chain = [
            certificate for _, certificate in certificates if certificate != leaf
        ]
        for certificate in (leaf, *chain):
            if not meets_minimum_strength(certificate):
                raise MalformedSignatureError(
                    f"{certificate.subject.rfc4514_string()} fails the key "
                    "strength policy"
                )
        return leaf, chain


def _decode_names(certificate: x509.Certificate) -> None:
    """Decode the lazily parsed subject and issuer of *certificate*.

    Raises ValueError for a corrupt name.
    """
    for name in (certificate.subject, certificate.issuer):
        name.public_bytes()
        name.rfc4514_string()


def _parse_signed_data(
    payload: bytes,
) -> tuple[cms.SignerInfo, list[tuple[object, x509.Certificate]]]:
    """Return the single SignerInfo and ``(asn1, cryptography)`` certificate pairs."""
    content_info = cms.ContentInfo.load(payload, strict=True)
    if content_info["content_type"].native != "signed_data":
        raise MalformedSignatureError("payload is not CMS signed data")
    signed_data = content_info["content"]

    signer_infos = signed_data["signer_infos"]
    if len(signer_infos) != 1:
        raise MalformedSignatureError(
            f"expected exactly one signer, found {len(signer_infos)}"
        )

    embedded = signed_data["certificates"]
    if not embedded:
        raise MalformedSignatureError("no certificates embedded in signature")

    certificates: list[tuple[object, x509.Certificate]] = []
    for choice in embedded:
        if choice.name != "certificate":
            continue
        asn1_cert = choice.chosen
        certificate = x509.load_der_x509_certificate(asn1_cert.dump())
        _decode_names(certificate)
        certificates.append((asn1_cert, certificate))
    if not certificates:
        raise MalformedSignatureError("no certificates embedded in signature")
    return signer_infos[0], certificates


def _find_signer_certificate(
    signer_info: cms.SignerInfo,
    certificates: list[tuple[object, x509.Certificate]],
) -> x509.Certificate:
    sid = signer_info["sid"]
    if sid.name == "issuer_and_serial_number":
        issuer = sid.chosen["issuer"]
        serial = sid.chosen["serial_number"].native
        for asn1_cert, certificate in certificates:
            if asn1_cert.serial_number == serial and asn1_cert.issuer == issuer:  # type: ignore[attr-defined]
                return certificate
    elif sid.name == "subject_key_identifier":
        key_identifier = sid.chosen.native
        for asn1_cert, certificate in certificates:
            if asn1_cert.key_identifier == key_identifier:  # type: ignore[attr-defined]
                return certificate
    raise MalformedSignatureError("signer certificate is not embedded")


def _check_message_digest(
    signed_attrs: cms.CMSAttributes, archive_bytes: bytes, digest_name: str
) -> None:
    message_digests = [
        attr["values"][0].native
        for attr in signed_attrs
        if attr["type"].native == "message_digest"
    ]
    if len(message_digests) != 1:
        raise MalformedSignatureError("missing message digest attribute")

    content_types = [
        attr["values"][0].native
        for attr in signed_attrs
        if attr["type"].native == "content_type"
    ]
    if content_types and content_types[0] != "data":
        raise MalformedSignatureError(f"unexpected content type {content_types[0]}")

    actual = hashlib.new(digest_name, archive_bytes).digest()
    if not hmac.compare_digest(message_digests[0], actual):
        raise MalformedSignatureError("archive digest does not match signature")


def _check_signature(
    signer_info: cms.SignerInfo,
    certificate: x509.Certificate,
    hash_algorithm: hashes.HashAlgorithm,
) -> None:
    # Authenticated attributes are signed as a DER SET, not as the [0] tag
    # they are stored under.
    signed_bytes = signer_info["signed_attrs"].untag().dump()
    signature = signer_info["signature"].native
    signature_algo = signer_info["signature_algorithm"].signature_algo
    public_key = certificate.public_key()

    try:
        if isinstance(public_key, rsa.RSAPublicKey) and signature_algo == "rsassa_pkcs1v15":
            public_key.verify(signature, signed_bytes, padding.PKCS1v15(), hash_algorithm)
        elif isinstance(public_key, ec.EllipticCurvePublicKey) and signature_algo == "ecdsa":
            public_key.verify(signature, signed_bytes, ec.ECDSA(hash_algorithm))
        else:
            raise MalformedSignatureError(
                f"unsupported signature algorithm {signature_algo} for "
                f"{type(public_key).__name__}"
            )
    except InvalidSignature as exc:
        raise MalformedSignatureError("signature does not verify") from exc


# ---------------------------------------------------------------------------
# Byte-level entry points
# ---------------------------------------------------------------------------


def sign(
    archive_bytes: bytes,
    certificate: x509.Certificate,
    private_key: SigningKey,
    intermediates: Sequence[x509.Certificate] = (),
) -> bytes:
    """Shortcut for :meth:`ExtensionSigner.sign`."""
    return ExtensionSigner().sign(archive_bytes, certificate, private_key, intermediates)


def verify(
    file_bytes: bytes, trust_store: TrustStore | None = None
) -> VerificationResult:
    """Shortcut for :meth:`ExtensionVerifier.verify`."""
    return ExtensionVerifier(trust_store).verify(file_bytes)


def unsign(file_bytes: bytes) -> bytes:
    """Return *file_bytes* without its signature block (idempotent)."""
    return block.strip(file_bytes)


__all__ = [
    "CertificateLoader",
    "ExtensionSigner",
    "ExtensionVerifier",
    "describe",
    "sign",
    "unsign",
    "verify",
]
