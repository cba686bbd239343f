"""``crisisroute keygen`` and ``crisisroute decrypt``.

``keygen partner`` creates an RSA key pair for onboarding a partner (the
partner keeps the private key, the public key goes into its configuration).
``keygen signing`` creates the instance Ed25519 request-signing key.
``decrypt`` is the partner-side view of a delivered package, for testing an
integration end to end.
"""

from __future__ import annotations

from pathlib import Path

import pydantic
import typer

from crisisroute.bridge.encryption import decrypt_package, generate_partner_keypair
from crisisroute.bridge.signing import generate_signing_keypair, key_fingerprint
from crisisroute.cli.commands.common import console, read_json
from crisisroute.core.errors import EncryptionError
from crisisroute.models.payload import EncryptedSignalPackage


def keygen_cmd(
    kind: str = typer.Argument("partner", help="'partner' (RSA) or 'signing' (Ed25519)."),
    out_dir: str = typer.Option(".", "--out", "-o", help="Directory for key files."),
) -> None:
    """Generate a partner RSA key pair or an instance signing key."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    if kind == "partner":
        private_pem, public_pem = generate_partner_keypair()
        (out / "partner_private.pem").write_text(private_pem, encoding="utf-8")
        (out / "partner_public.pem").write_text(public_pem, encoding="utf-8")
        console.print(f"[green]Partner key pair written to {out}[/green]")
        console.print("[dim]Give partner_private.pem to the partner only.[/dim]")
    elif kind == "signing":
        private_hex, public_hex = generate_signing_keypair()
        (out / "instance_signing.key").write_text(private_hex, encoding="utf-8")
        (out / "instance_signing.pub").write_text(public_hex, encoding="utf-8")
        console.print(f"[green]Signing key written to {out}[/green]")
        console.print(f"[bold]Fingerprint:[/bold] {key_fingerprint(public_hex)}")
        console.print("[dim]Set CRISISROUTE_INSTANCE_SIGNING_KEY from instance_signing.key.[/dim]")
    else:
        console.print(f"[bold red]Unknown key kind:[/bold red] {kind}")
        raise typer.Exit(code=1)


def decrypt_cmd(
    package_file: str = typer.Argument(
        ..., help="JSON file with an encrypted package or a full webhook envelope."
    ),
    private_key: str = typer.Option(
        ..., "--key", "-k", help="Partner RSA private key (PEM file)."
    ),
) -> None:
    """Decrypt a package with a partner private key and print the payload."""
    data = read_json(package_file, "Package file")
    if isinstance(data, dict) and "package" in data:
        data = data["package"]
    try:
        package = EncryptedSignalPackage.model_validate(data)
    except pydantic.ValidationError as exc:
        console.print(f"[bold red]Not an encrypted signal package:[/bold red]\n{exc}")
        raise typer.Exit(code=1) from exc

    key_path = Path(private_key)
    if not key_path.exists():
        console.print(f"[bold red]Key file not found:[/bold red] {private_key}")
        raise typer.Exit(code=1)

    try:
        plaintext = decrypt_package(package, key_path.read_text(encoding="utf-8"))
    except EncryptionError as exc:
        console.print(f"[bold red]Decryption failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print_json(plaintext.decode("utf-8"))
