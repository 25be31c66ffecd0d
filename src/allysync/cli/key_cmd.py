"""Key commands: keygen, encrypt, decrypt."""

from __future__ import annotations

import sys

import click

from ..config import SyncConfig
from ..crypt import decrypt, encrypt, generate_key, is_valid_key
from ._common import console, read_text_argument


def _check_key(key: str) -> None:
    if not is_valid_key(key):
        console.print("[bold red]Invalid key:[/] expected 64 hex digits.")
        sys.exit(2)


def register_key_commands(main: click.Group) -> None:
    """Register keygen, encrypt and decrypt."""

    @main.command("keygen")
    @click.option("--next", "as_next", is_flag=True,
                  help="Print with the next-key prefix used for rotation transfers.")
    def keygen(as_next):
        """Generate a fresh alliance key."""
        key = generate_key()
        click.echo((SyncConfig().new_key_prefix + key) if as_next else key)

    @main.command("encrypt")
    @click.option("--key", "-k", required=True, envvar="ALLYSYNC_KEY", help="64-hex alliance key.")
    @click.argument("text", required=False)
    def encrypt_cmd(key, text):
        """Encrypt TEXT (or stdin) into segment-safe ciphertext."""
        _check_key(key)
        click.echo(encrypt(read_text_argument(text), key))

    @main.command("decrypt")
    @click.option("--key", "-k", required=True, envvar="ALLYSYNC_KEY", help="64-hex alliance key.")
    @click.argument("text", required=False)
    def decrypt_cmd(key, text):
        """Decrypt segment ciphertext from TEXT (or stdin)."""
        _check_key(key)
        plain = decrypt(read_text_argument(text), key)
        if plain is None:
            console.print("[bold red]Decryption failed:[/] wrong key or corrupted data.")
            sys.exit(1)
        click.echo(plain)
