"""
superstorage CLI -- inspect and edit a storage home from the shell.

The main Click group holds the options every command shares (home,
config file, obfuscation); command groups live in their own modules
and are attached via register functions.

Entry point: superstorage.cli:main
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import click

from .. import STORAGE_HOME, __version__
from ._common import CliContext


@click.group()
@click.version_option(version=__version__, prog_name="superstorage")
@click.option("--home", default=STORAGE_HOME, type=click.Path(), help="Storage home directory.")
@click.option("--config", "config_path", default=None, type=click.Path(),
              help="Config YAML (default: <home>/config.yaml).")
@click.option("--phrase", default=None, envvar="SUPERSTORAGE_PHRASE",
              help="Obfuscation phrase (env: SUPERSTORAGE_PHRASE).")
@click.option("--encrypt-key/--no-encrypt-key", default=None, help="Obfuscate storage keys.")
@click.option("--encrypt-value/--no-encrypt-value", default=None, help="Obfuscate stored values.")
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr.")
@click.pass_context
def main(
    ctx: click.Context,
    home: str,
    config_path: Optional[str],
    phrase: Optional[str],
    encrypt_key: Optional[bool],
    encrypt_value: Optional[bool],
    verbose: bool,
):
    """superstorage -- typed, validated, synchronised key/value storage."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    home_path = Path(os.path.expanduser(home))
    ctx.obj = CliContext(
        home=home_path,
        config_path=Path(config_path).expanduser() if config_path else home_path / "config.yaml",
        phrase=phrase,
        encrypt_key=encrypt_key,
        encrypt_value=encrypt_value,
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .values import register_value_commands  # noqa: E402
from .codec import register_codec_commands  # noqa: E402

register_value_commands(main)
register_codec_commands(main)
