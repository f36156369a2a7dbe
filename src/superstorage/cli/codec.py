"""Codec commands: encode, decode."""

from __future__ import annotations

import sys

import click

from .. import obfuscate
from ..errors import ObfuscationDecodeError
from ._common import CliContext, console


def register_codec_commands(main: click.Group) -> None:
    """Register the obfuscation codec commands."""

    @main.command("encode")
    @click.argument("text")
    @click.pass_obj
    def encode_text(ctx: CliContext, text: str):
        """Obfuscate TEXT with the configured phrase."""
        click.echo(obfuscate.encode(ctx.build_config().encrypt.phrase, text))

    @main.command("decode")
    @click.argument("text")
    @click.pass_obj
    def decode_text(ctx: CliContext, text: str):
        """Reverse 'encode'. Exits 1 if TEXT doesn't decode with the phrase."""
        try:
            click.echo(obfuscate.decode(ctx.build_config().encrypt.phrase, text, strict=True))
        except ObfuscationDecodeError as exc:
            console.print(f"[bold red]Cannot decode:[/] {exc}")
            sys.exit(1)
