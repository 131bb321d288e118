"""Shared test fixtures for dxt-sign."""

from __future__ import annotations

import io
import zipfile
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from dxt_sign.trust import TrustStore

CertFactory = Callable[..., x509.Certificate]

# ---------------------------------------------------------------------------
# Key fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def leaf_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ca_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def intermediate_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def weak_key() -> rsa.RSAPrivateKey:
    """A 1024-bit RSA key, below the signing policy floor."""
    return rsa.generate_private_key(public_exponent=65537, key_size=1024)


@pytest.fixture(scope="session")
def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


# ---------------------------------------------------------------------------
# Certificate fixtures
# ---------------------------------------------------------------------------


def _name(common_name: str, organization: str = "Test Org") -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        ]
    )


@pytest.fixture(scope="session")
def make_certificate() -> CertFactory:
    """Factory building certificates; self-signed unless an issuer is given."""

    def _make(
        common_name: str,
        key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey,
        issuer: x509.Certificate | None = None,
        issuer_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey | None = None,
        ca: bool = False,
        code_signing: bool = True,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
    ) -> x509.Certificate:
        now = datetime.now(tz=UTC)
        subject = _name(common_name)
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer.subject if issuer is not None else subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before or now - timedelta(days=1))
            .not_valid_after(not_after or now + timedelta(days=365))
            .add_extension(
                x509.BasicConstraints(ca=ca, path_length=None), critical=True
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=not ca,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=ca,
                    crl_sign=ca,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
        )
        if code_signing and not ca:
            builder = builder.add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CODE_SIGNING]),
                critical=False,
            )
        return builder.sign(issuer_key or key, hashes.SHA256())

    return _make


@pytest.fixture(scope="session")
def self_signed_cert(
    make_certificate: CertFactory, leaf_key: rsa.RSAPrivateKey
) -> x509.Certificate:
    return make_certificate("Test DXT Publisher", leaf_key)


@pytest.fixture(scope="session")
def ca_cert(make_certificate: CertFactory, ca_key: rsa.RSAPrivateKey) -> x509.Certificate:
    """A self-signed root CA."""
    return make_certificate("Test CA", ca_key, ca=True)


@pytest.fixture(scope="session")
def ca_signed_cert(
    make_certificate: CertFactory,
    leaf_key: rsa.RSAPrivateKey,
    ca_cert: x509.Certificate,
    ca_key: rsa.RSAPrivateKey,
) -> x509.Certificate:
    """A code-signing leaf issued directly by :func:`ca_cert`."""
    return make_certificate(
        "Test Publisher (CA Signed)", leaf_key, issuer=ca_cert, issuer_key=ca_key
    )


@pytest.fixture(scope="session")
def intermediate_cert(
    make_certificate: CertFactory,
    intermediate_key: rsa.RSAPrivateKey,
    ca_cert: x509.Certificate,
    ca_key: rsa.RSAPrivateKey,
) -> x509.Certificate:
    return make_certificate(
        "Test Intermediate CA",
        intermediate_key,
        issuer=ca_cert,
        issuer_key=ca_key,
        ca=True,
    )


@pytest.fixture(scope="session")
def intermediate_signed_cert(
    make_certificate: CertFactory,
    leaf_key: rsa.RSAPrivateKey,
    intermediate_cert: x509.Certificate,
    intermediate_key: rsa.RSAPrivateKey,
) -> x509.Certificate:
    """A leaf issued by :func:`intermediate_cert`, two steps below the root."""
    return make_certificate(
        "Test Publisher (Intermediate Signed)",
        leaf_key,
        issuer=intermediate_cert,
        issuer_key=intermediate_key,
    )


@pytest.fixture(scope="session")
def weak_cert(
    make_certificate: CertFactory, weak_key: rsa.RSAPrivateKey
) -> x509.Certificate:
    """A self-signed certificate with a 1024-bit RSA key."""
    return make_certificate("Weak Publisher", weak_key)


@pytest.fixture(scope="session")
def ec_cert(
    make_certificate: CertFactory, ec_key: ec.EllipticCurvePrivateKey
) -> x509.Certificate:
    return make_certificate("EC Publisher", ec_key)


# ---------------------------------------------------------------------------
# Trust store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def empty_trust_store() -> TrustStore:
    return TrustStore()


@pytest.fixture()
def ca_trust_store(ca_cert: x509.Certificate) -> TrustStore:
    return TrustStore([ca_cert])


# ---------------------------------------------------------------------------
# Archive fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def archive_bytes() -> bytes:
    """A minimal stored ZIP holding ``manifest.json`` = ``{"test":true}``."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as zf:
        zf.writestr("manifest.json", '{"test":true}')
    return buffer.getvalue()


@pytest.fixture()
def dxt_file(tmp_path: Path, archive_bytes: bytes) -> Path:
    path = tmp_path / "test.dxt"
    path.write_bytes(archive_bytes)
    return path


# ---------------------------------------------------------------------------
# On-disk PEM fixtures
# ---------------------------------------------------------------------------


def _write_pem_identity(
    directory: Path,
    stem: str,
    certificate: x509.Certificate,
    key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey,
) -> tuple[Path, Path]:
    directory.mkdir(parents=True, exist_ok=True)
    cert_path = directory / f"{stem}.crt"
    key_path = directory / f"{stem}.key"
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


@pytest.fixture()
def self_signed_pem(
    tmp_path: Path,
    self_signed_cert: x509.Certificate,
    leaf_key: rsa.RSAPrivateKey,
) -> tuple[Path, Path]:
    """(certificate, key) PEM paths for the self-signed identity."""
    return _write_pem_identity(tmp_path / "certs", "self-signed", self_signed_cert, leaf_key)


@pytest.fixture()
def ca_signed_pem(
    tmp_path: Path,
    ca_signed_cert: x509.Certificate,
    leaf_key: rsa.RSAPrivateKey,
    ca_cert: x509.Certificate,
    ca_key: rsa.RSAPrivateKey,
) -> tuple[Path, Path, Path]:
    """(certificate, key, ca certificate) PEM paths for the CA-issued identity."""
    cert_path, key_path = _write_pem_identity(
        tmp_path / "certs", "signed", ca_signed_cert, leaf_key
    )
    ca_path, _ = _write_pem_identity(tmp_path / "certs", "ca", ca_cert, ca_key)
    return cert_path, key_path, ca_path


@pytest.fixture()
def weak_pem(
    tmp_path: Path, weak_cert: x509.Certificate, weak_key: rsa.RSAPrivateKey
) -> tuple[Path, Path]:
    return _write_pem_identity(tmp_path / "certs", "weak", weak_cert, weak_key)
