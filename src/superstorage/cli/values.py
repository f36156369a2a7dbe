"""Value commands: get, set, delete, keys, clear, watch."""

from __future__ import annotations

import sys
import time
from typing import Optional

import click
from rich.table import Table

from .. import obfuscate
from ._common import CliContext, console, parse_value, render, resolve_schema


def register_value_commands(main: click.Group) -> None:
    """Register the value commands on the main group."""

    @main.command("get")
    @click.argument("key")
    @click.option("--schema", "schema_path", default=None, type=click.Path(exists=True),
                  help="Schema file (YAML/JSON). Without one the raw payload is shown.")
    @click.option("--initial", default=None, help="Initial value (JSON) if nothing valid is stored.")
    @click.pass_obj
    def get_value(ctx: CliContext, key: str, schema_path: Optional[str], initial: Optional[str]):
        """Load KEY, validate it and print it.

        Examples:

            superstorage get user --schema user.yaml

            superstorage --phrase s3cret --encrypt-value get token
        """
        errors: list[Exception] = []
        schema = resolve_schema(schema_path)
        config = ctx.build_config(on_error=errors.append, use_broadcast_channel=False)
        initial_value = parse_value(initial) if initial is not None else None

        value = ctx.open_storage().load(key, schema, initial_value, config)

        for exc in errors:
            console.print(f"[yellow]Stored value rejected:[/] {exc}")
        if value is None:
            console.print(f"[dim]No value stored for[/] {key}")
            sys.exit(1)
        click.echo(render(value))

    @main.command("set")
    @click.argument("key")
    @click.argument("value")
    @click.option("--schema", "schema_path", default=None, type=click.Path(exists=True),
                  help="Schema file (YAML/JSON). Without one it is inferred from VALUE.")
    @click.option("--backup", is_flag=True, help="Snapshot rejected values under a timestamped key.")
    @click.pass_obj
    def set_value(ctx: CliContext, key: str, value: str, schema_path: Optional[str], backup: bool):
        """Validate VALUE (JSON, or plain text) and store it under KEY.

        Other instances watching KEY are notified.

        Examples:

            superstorage set user '{"name": "Bob", "age": 40}' --schema user.yaml

            superstorage set greeting "hello world"
        """
        errors: list[Exception] = []
        candidate = parse_value(value)
        schema = resolve_schema(schema_path, sample=candidate)
        config = ctx.build_config(on_error=errors.append, backup_on_error=backup)

        ctx.open_storage().update(key, schema, candidate, config)

        if errors:
            for exc in errors:
                console.print(f"[bold red]Rejected:[/] {exc}")
            sys.exit(1)
        console.print(f"[green]Stored[/] {key}")

    @main.command("delete")
    @click.argument("key")
    @click.pass_obj
    def delete_value(ctx: CliContext, key: str):
        """Remove the record for KEY."""
        storage = ctx.open_storage()
        storage.store.delete(storage.effective_key(key, ctx.build_config()))
        console.print(f"[green]Deleted[/] {key}")

    @main.command("keys")
    @click.pass_obj
    def list_keys(ctx: CliContext):
        """List stored keys, de-obfuscating them where the phrase fits."""
        config = ctx.build_config()
        keys = ctx.open_storage().store.keys()
        if not keys:
            console.print("[dim]No records.[/]")
            return

        table = Table(title=f"Records in {ctx.store_dir}")
        table.add_column("Storage key", style="cyan")
        table.add_column("Logical key")
        for storage_key in keys:
            logical = obfuscate.decode(config.encrypt.phrase, storage_key) if config.encrypt.key else storage_key
            table.add_row(storage_key, logical or "[dim]?[/]")
        console.print(table)

    @main.command("clear")
    @click.option("--yes", is_flag=True, help="Don't ask for confirmation.")
    @click.pass_obj
    def clear_values(ctx: CliContext, yes: bool):
        """Remove every record."""
        if not yes:
            click.confirm(f"Delete every record in {ctx.store_dir}?", abort=True)
        ctx.open_storage().store.clear()
        console.print("[green]Cleared.[/]")

    @main.command("watch")
    @click.argument("key")
    @click.option("--schema", "schema_path", default=None, type=click.Path(exists=True),
                  help="Schema file (YAML/JSON) incoming values must satisfy.")
    @click.option("--interval", default=0.5, type=float, help="Poll interval in seconds.")
    @click.option("--count", default=0, type=int, help="Exit after this many values (0 = never).")
    @click.option("--timeout", default=0.0, type=float, help="Exit after this many seconds (0 = never).")
    @click.pass_obj
    def watch_value(
        ctx: CliContext,
        key: str,
        schema_path: Optional[str],
        interval: float,
        count: int,
        timeout: float,
    ):
        """Print every value other writers store under KEY."""
        schema = resolve_schema(schema_path)
        config = ctx.build_config(use_broadcast_channel=True)
        storage = ctx.open_storage()
        received: list = []

        def on_value(value) -> None:
            received.append(value)
            click.echo(render(value))

        def on_error(exc: Exception) -> None:
            console.print(f"[yellow]Ignored invalid update:[/] {exc}")

        unsubscribe = storage.subscribe(key, schema, config, on_value, on_error)
        console.print(f"[dim]Watching[/] {key} [dim](Ctrl+C to stop)[/]")
        started = time.monotonic()
        try:
            while True:
                storage.broadcast.poll()
                if count and len(received) >= count:
                    break
                if timeout and time.monotonic() - started >= timeout:
                    break
                time.sleep(interval)
        except KeyboardInterrupt:
            pass
        finally:
            unsubscribe()
        if not received:
            console.print("[dim]No updates.[/]")
