"""CLI entry point for dxt-sign."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from dxt_sign.archive import unpack
from dxt_sign.core import CertificateLoader, ExtensionSigner, ExtensionVerifier
from dxt_sign.exceptions import DxtSignError
from dxt_sign.models import SignatureStatus, VerificationResult
from dxt_sign.trust import TrustStore

DEFAULT_IDENTITY_DIR = Path.home() / ".dxt-sign"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _trust_options(func):  # type: ignore[no-untyped-def]
    func = click.option(
        "--trust-bundle",
        envvar="DXT_TRUST_BUNDLE",
        default=None,
        type=click.Path(exists=True, dir_okay=False),
        help="PEM bundle of additional trusted root certificates.",
    )(func)
    func = click.option(
        "--no-system-roots",
        is_flag=True,
        help="Do not trust the platform's root certificates.",
    )(func)
    return func


def _build_trust_store(trust_bundle: str | None, no_system_roots: bool) -> TrustStore:
    store = TrustStore() if no_system_roots else TrustStore.from_system()
    if trust_bundle:
        store.merge(TrustStore.from_pem_bundle(trust_bundle))
    return store


def _validity(result: VerificationResult) -> str:
    return f"{result.valid_from:%Y-%m-%d} to {result.valid_to:%Y-%m-%d}"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="dxt-sign")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """dxt-sign: code signing for packed desktop extensions."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s"
        )


@main.command("sign")
@click.argument("dxt_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--cert",
    "-c",
    default="cert.pem",
    show_default=True,
    envvar="DXT_CERT",
    metavar="PATH",
    help="Certificate file (PEM).",
)
@click.option(
    "--key",
    "-k",
    default="key.pem",
    show_default=True,
    envvar="DXT_KEY",
    metavar="PATH",
    help="Private key file (PEM).",
)
@click.option(
    "--intermediate",
    "-i",
    multiple=True,
    metavar="PATH",
    help="Intermediate certificate file (repeatable).",
)
@click.option(
    "--self-signed",
    is_flag=True,
    help="Sign with a self-signed certificate, creating it if needed.",
)
@click.option(
    "--identity-dir",
    default=None,
    metavar="DIR",
    help="Where --self-signed keeps its certificate (default: ~/.dxt-sign).",
)
@_trust_options
def sign_command(
    dxt_file: str,
    cert: str,
    key: str,
    intermediate: tuple[str, ...],
    self_signed: bool,
    identity_dir: str | None,
    trust_bundle: str | None,
    no_system_roots: bool,
) -> None:
    """Sign a packed extension in place."""
    name = Path(dxt_file).name
    try:
        trust_store = _build_trust_store(trust_bundle, no_system_roots)
    except (OSError, ValueError) as exc:
        click.echo(f"Error: Cannot load trusted roots: {exc}", err=True)
        sys.exit(1)

    if self_signed:
        identity = Path(identity_dir) if identity_dir else DEFAULT_IDENTITY_DIR
        cert = str(identity / "self-signed-cert.pem")
        key = str(identity / "self-signed-key.pem")
        if Path(cert).exists() and Path(key).exists():
            click.echo("Using existing self-signed certificate")
        else:
            click.echo("Creating self-signed certificate...")
            try:
                CertificateLoader().create_self_signed(cert, key)
            except OSError as exc:
                click.echo(f"Error: Cannot create self-signed certificate: {exc}", err=True)
                sys.exit(1)
            click.echo("Self-signed certificate created")
    else:
        if not Path(cert).exists():
            click.echo(f"Error: Certificate file not found: {cert}", err=True)
            click.echo("Tip: Use --self-signed to create a self-signed certificate")
            sys.exit(1)
        if not Path(key).exists():
            click.echo(f"Error: Private key file not found: {key}", err=True)
            sys.exit(1)

    click.echo(f"Signing {name}...")
    try:
        ExtensionSigner().sign_file(dxt_file, cert, key, list(intermediate))
    except (DxtSignError, OSError) as exc:
        click.echo(f"Error: Signing failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Successfully signed {name}")

    result = ExtensionVerifier(trust_store).verify_file(dxt_file)
    if result.is_signed:
        click.echo(f"Signed by: {result.publisher}")
        click.echo(f"Issuer: {result.issuer}")
        if result.status is SignatureStatus.self_signed:
            click.echo("Warning: Certificate is self-signed")
    else:
        click.echo("Warning: Signer certificate is not trusted on this machine")


@main.command("verify")
@click.argument("dxt_file", type=click.Path(exists=True, dir_okay=False))
@_trust_options
def verify_command(
    dxt_file: str, trust_bundle: str | None, no_system_roots: bool
) -> None:
    """Verify the signature of a packed extension."""
    click.echo(f"Verifying {Path(dxt_file).name}...")
    try:
        verifier = ExtensionVerifier(_build_trust_store(trust_bundle, no_system_roots))
        result = verifier.verify_file(dxt_file)
    except (DxtSignError, OSError, ValueError) as exc:
        click.echo(f"Error: Verification failed: {exc}", err=True)
        sys.exit(1)

    if result.status is SignatureStatus.signed:
        click.echo("Signature is valid")
        click.echo(f"Signed by: {result.publisher}")
        click.echo(f"Issuer: {result.issuer}")
        click.echo(f"Valid from: {_validity(result)}")
        click.echo(f"Fingerprint: {result.fingerprint}")
    elif result.status is SignatureStatus.self_signed:
        click.echo("Signature is valid (self-signed)")
        click.echo("WARNING: This extension is self-signed")
        click.echo(f"Signed by: {result.publisher}")
        click.echo(f"Valid from: {_validity(result)}")
        click.echo(f"Fingerprint: {result.fingerprint}")
    else:
        click.echo("Error: Extension is not signed", err=True)
        sys.exit(2)


@main.command("info")
@click.argument("dxt_file", type=click.Path(exists=True, dir_okay=False))
@_trust_options
def info_command(dxt_file: str, trust_bundle: str | None, no_system_roots: bool) -> None:
    """Display information about a packed extension."""
    path = Path(dxt_file)
    try:
        file_bytes = path.read_bytes()
        verifier = ExtensionVerifier(_build_trust_store(trust_bundle, no_system_roots))
        result, chain = verifier.inspect(file_bytes)
    except (DxtSignError, OSError, ValueError) as exc:
        click.echo(f"Error: Failed to read extension info: {exc}", err=True)
        sys.exit(1)

    click.echo(f"File: {path.name}")
    click.echo(f"Size: {len(file_bytes) / 1024:.2f} KB")

    if not result.is_signed:
        click.echo("\nWARNING: Not signed")
        return

    self_signed = result.status is SignatureStatus.self_signed
    click.echo("\nSignature Information:")
    click.echo(f"  Subject: {result.publisher}")
    click.echo(f"  Issuer: {result.issuer}{' (self-signed)' if self_signed else ''}")
    click.echo(f"  Valid from: {_validity(result)}")
    click.echo(f"  Fingerprint: {result.fingerprint}")
    if chain and chain[0].key_size is not None:
        click.echo(f"  Key: {chain[0].key_algorithm} {chain[0].key_size} bits")
    click.echo(f"  Status: {'Valid (self-signed)' if self_signed else 'Valid'}")


@main.command("unsign")
@click.argument("dxt_file", type=click.Path(exists=True, dir_okay=False))
def unsign_command(dxt_file: str) -> None:
    """Remove the signature from a packed extension."""
    click.echo(f"Removing signature from {Path(dxt_file).name}...")
    try:
        removed = ExtensionSigner().unsign_file(dxt_file)
    except OSError as exc:
        click.echo(f"Error: Failed to remove signature: {exc}", err=True)
        sys.exit(1)
    click.echo("Signature removed" if removed else "No signature found")


@main.command("unpack")
@click.argument("dxt_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("output", required=False, type=click.Path(file_okay=False))
def unpack_command(dxt_file: str, output: str | None) -> None:
    """Extract a packed extension into OUTPUT (default: current directory)."""
    out_dir = output or str(Path.cwd())
    try:
        extracted = unpack(Path(dxt_file).read_bytes(), out_dir)
    except (DxtSignError, OSError) as exc:
        click.echo(f"Error: Failed to unpack extension: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Extension unpacked successfully to {out_dir} ({len(extracted)} files)")


if __name__ == "__main__":
    main()
