"""dxt-sign quickstart: sign, verify, tamper with and unsign an extension.

Run this file directly to see the signing lifecycle end to end:

    python examples/quickstart.py

Every demo works inside a temporary directory and cleans up after itself.
"""

from __future__ import annotations

import io
import json
import tempfile
import zipfile
from pathlib import Path

from dxt_sign import (
    CertificateLoader,
    ExtensionSigner,
    ExtensionVerifier,
    SignatureStatus,
    TrustStore,
)


def _pack_extension(path: Path) -> None:
    """Write a tiny packed extension (a ZIP holding a manifest) to *path*."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(
            "manifest.json",
            json.dumps({"name": "hello-extension", "version": "1.0.0"}),
        )
        zf.writestr("server/index.js", "console.log('hello');\n")
    path.write_bytes(buffer.getvalue())


# ---------------------------------------------------------------------------
# Demo 1: self-signed signing and verification
# ---------------------------------------------------------------------------


def demo_self_signed() -> None:
    print("\n=== Demo 1: Self-signed Sign & Verify ===")

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        extension = tmp / "hello.dxt"
        _pack_extension(extension)

        cert_path = tmp / "identity" / "cert.pem"
        key_path = tmp / "identity" / "key.pem"
        CertificateLoader().create_self_signed(str(cert_path), str(key_path))
        print(f"  Development identity written to: {cert_path.parent}/")

        ExtensionSigner().sign_file(str(extension), str(cert_path), str(key_path))
        print(f"  Signed {extension.name} ({extension.stat().st_size} bytes)")

        # An empty store: nothing is trusted, so the best verdict is self-signed.
        result = ExtensionVerifier(TrustStore()).verify_file(str(extension))
        print(f"  Status     : {result.status.value}")
        print(f"  Publisher  : {result.publisher}")
        print(f"  Fingerprint: {result.fingerprint}")
        assert result.status is SignatureStatus.self_signed
        print("  Demo 1 passed.")


# ---------------------------------------------------------------------------
# Demo 2: tamper detection
# ---------------------------------------------------------------------------


def demo_tamper_detection() -> None:
    print("\n=== Demo 2: Tamper Detection ===")

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        extension = tmp / "hello.dxt"
        _pack_extension(extension)

        loader = CertificateLoader()
        certificate, key = loader.create_self_signed(
            str(tmp / "cert.pem"), str(tmp / "key.pem"), key_size=2048
        )
        signed = ExtensionSigner().sign(extension.read_bytes(), certificate, key)

        tampered = bytearray(signed)
        tampered[10] ^= 0xFF
        result = ExtensionVerifier(TrustStore()).verify(bytes(tampered))
        print(f"  Status after flipping one archive byte: {result.status.value}")
        assert result.status is SignatureStatus.unsigned
        print("  Demo 2 passed.")


# ---------------------------------------------------------------------------
# Demo 3: removing a signature
# ---------------------------------------------------------------------------


def demo_unsign() -> None:
    print("\n=== Demo 3: Unsign ===")

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        extension = tmp / "hello.dxt"
        _pack_extension(extension)
        original = extension.read_bytes()

        cert_path, key_path = tmp / "cert.pem", tmp / "key.pem"
        CertificateLoader().create_self_signed(str(cert_path), str(key_path), key_size=2048)
        signer = ExtensionSigner()
        signer.sign_file(str(extension), str(cert_path), str(key_path))

        print(f"  Removed signature: {signer.unsign_file(str(extension))}")
        print(f"  Removed again    : {signer.unsign_file(str(extension))}")
        assert extension.read_bytes() == original
        print("  Demo 3 passed.")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run all quickstart demos in sequence."""
    print("dxt-sign quickstart demos")
    print("=" * 45)

    demo_self_signed()
    demo_tamper_detection()
    demo_unsign()

    print("\n" + "=" * 45)
    print("All demos completed successfully.")


if __name__ == "__main__":
    main()
