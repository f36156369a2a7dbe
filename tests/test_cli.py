"""Tests for the superstorage CLI via Click's test runner."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from superstorage import obfuscate
from superstorage.cli import main
from superstorage.store import FileStore

USER_SCHEMA = """\
kind: object
shape:
  name:
    kind: string
    required: true
  age:
    kind: number
    min: 0
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def schema_file(tmp_path: Path) -> Path:
    """A user schema written as YAML."""
    path = tmp_path / "user.yaml"
    path.write_text(USER_SCHEMA, encoding="utf-8")
    return path


def invoke(runner: CliRunner, home: Path, *args: str, **kwargs):
    return runner.invoke(main, ["--home", str(home), *args], **kwargs)


# ---------------------------------------------------------------------------
# set / get
# ---------------------------------------------------------------------------


class TestSetGet:
    """Writing and reading values."""

    def test_help(self, runner: CliRunner) -> None:
        """The main group lists its commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("get", "set", "delete", "keys", "clear", "watch", "encode", "decode"):
            assert command in result.output

    def test_set_and_get_string(self, runner: CliRunner, storage_home: Path) -> None:
        """Plain text is stored verbatim and read back."""
        result = invoke(runner, storage_home, "set", "greeting", "hello world")
        assert result.exit_code == 0, result.output
        assert "Stored greeting" in result.output

        result = invoke(runner, storage_home, "get", "greeting")
        assert result.exit_code == 0
        assert result.output.strip() == "hello world"
        assert FileStore(storage_home / "store").get("greeting") == b"hello world"

    def test_set_and_get_with_schema(
        self, runner: CliRunner, storage_home: Path, schema_file: Path
    ) -> None:
        """Objects validated against a schema file come back as JSON."""
        result = invoke(
            runner, storage_home, "set", "user", '{"name": "Bob", "age": 40}',
            "--schema", str(schema_file),
        )
        assert result.exit_code == 0, result.output

        result = invoke(runner, storage_home, "get", "user", "--schema", str(schema_file))
        assert result.exit_code == 0
        assert json.loads(result.output) == {"name": "Bob", "age": 40}

    def test_set_rejected(self, runner: CliRunner, storage_home: Path, schema_file: Path) -> None:
        """A value failing the schema exits 1 and stores nothing."""
        result = invoke(
            runner, storage_home, "set", "user", '{"name": "Bob", "age": -1}',
            "--schema", str(schema_file),
        )
        assert result.exit_code == 1
        assert "Rejected" in result.output
        assert "age" in result.output
        assert FileStore(storage_home / "store").keys() == []

    def test_set_rejected_with_backup(
        self, runner: CliRunner, storage_home: Path, schema_file: Path
    ) -> None:
        """--backup snapshots the rejected value."""
        result = invoke(
            runner, storage_home, "set", "user", '{"age": 3}',
            "--schema", str(schema_file), "--backup",
        )
        assert result.exit_code == 1
        (key,) = FileStore(storage_home / "store").keys()
        assert key.startswith("user_")

    def test_get_missing(self, runner: CliRunner, storage_home: Path) -> None:
        """Nothing stored and no initial value exits 1."""
        result = invoke(runner, storage_home, "get", "nothing")
        assert result.exit_code == 1
        assert "No value stored" in result.output

    def test_get_initial(self, runner: CliRunner, storage_home: Path) -> None:
        """--initial is printed when nothing is stored."""
        result = invoke(runner, storage_home, "get", "nothing", "--initial", '"fallback"')
        assert result.exit_code == 0
        assert result.output.strip() == "fallback"

    def test_get_invalid_record(
        self, runner: CliRunner, storage_home: Path, schema_file: Path
    ) -> None:
        """An invalid record is reported and the initial value shown."""
        FileStore(storage_home / "store").set("user", b'{"age": 5}')
        result = invoke(
            runner, storage_home, "get", "user", "--schema", str(schema_file),
            "--initial", '{"name": "", "age": 0}',
        )
        assert result.exit_code == 0
        assert "Stored value rejected" in result.output
        assert "Required string missing" in result.output

    def test_bad_schema_file(self, runner: CliRunner, storage_home: Path, tmp_path: Path) -> None:
        """A schema file that isn't a schema is a usage error."""
        bad = tmp_path / "bad.yaml"
        bad.write_text("kind: banana\n", encoding="utf-8")
        result = invoke(runner, storage_home, "get", "user", "--schema", str(bad))
        assert result.exit_code == 2
        assert "Invalid schema file" in result.output

    def test_bad_schema_file_logged(
        self, runner: CliRunner, storage_home: Path, tmp_path: Path, caplog
    ) -> None:
        """The rejected schema file is logged by the CLI logger."""
        bad = tmp_path / "bad.yaml"
        bad.write_text("kind: banana\n", encoding="utf-8")
        with caplog.at_level(logging.DEBUG, logger="superstorage.cli"):
            invoke(runner, storage_home, "get", "user", "--schema", str(bad))
        assert any("bad.yaml" in r.getMessage() for r in caplog.records)


# ---------------------------------------------------------------------------
# Obfuscation flags
# ---------------------------------------------------------------------------


class TestObfuscationFlags:
    """--phrase / --encrypt-key / --encrypt-value."""

    def test_encrypted_round_trip(self, runner: CliRunner, storage_home: Path) -> None:
        """Obfuscated records read back only with the same flags."""
        flags = ["--phrase", "s3cret", "--encrypt-key", "--encrypt-value"]
        result = invoke(runner, storage_home, *flags, "set", "token", "abc123")
        assert result.exit_code == 0, result.output

        store = FileStore(storage_home / "store")
        (stored_key,) = store.keys()
        assert stored_key == obfuscate.encode("s3cret", "token")
        assert store.get(stored_key) != b"abc123"

        result = invoke(runner, storage_home, *flags, "get", "token")
        assert result.output.strip() == "abc123"

        result = invoke(runner, storage_home, "get", "token")
        assert result.exit_code == 1

    def test_phrase_from_env(self, runner: CliRunner, storage_home: Path) -> None:
        """SUPERSTORAGE_PHRASE supplies the phrase."""
        env = {"SUPERSTORAGE_PHRASE": "from-env"}
        invoke(runner, storage_home, "--encrypt-value", "set", "k", "v", env=env)
        result = invoke(runner, storage_home, "--encrypt-value", "get", "k", env=env)
        assert result.output.strip() == "v"

    def test_config_file_defaults(self, runner: CliRunner, storage_home: Path) -> None:
        """config.yaml in the home sets the obfuscation defaults."""
        (storage_home / "config.yaml").write_text(
            "encrypt:\n  key: true\n  phrase: from-file\n", encoding="utf-8"
        )
        invoke(runner, storage_home, "set", "k", "v")
        (stored_key,) = FileStore(storage_home / "store").keys()
        assert stored_key == obfuscate.encode("from-file", "k")

        result = invoke(runner, storage_home, "--no-encrypt-key", "get", "k")
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# keys / delete / clear
# ---------------------------------------------------------------------------


class TestRecordCommands:
    """Listing and removing records."""

    def test_keys_empty(self, runner: CliRunner, storage_home: Path) -> None:
        result = invoke(runner, storage_home, "keys")
        assert result.exit_code == 0
        assert "No records" in result.output

    def test_keys_lists_records(self, runner: CliRunner, storage_home: Path) -> None:
        """Stored keys appear in the table."""
        invoke(runner, storage_home, "set", "alpha", "1")
        invoke(runner, storage_home, "set", "beta", "2")
        result = invoke(runner, storage_home, "keys")
        assert result.exit_code == 0
        assert "alpha" in result.output
        assert "beta" in result.output

    def test_delete(self, runner: CliRunner, storage_home: Path) -> None:
        """delete removes one record."""
        invoke(runner, storage_home, "set", "alpha", "1")
        invoke(runner, storage_home, "set", "beta", "2")
        result = invoke(runner, storage_home, "delete", "alpha")
        assert result.exit_code == 0
        assert FileStore(storage_home / "store").keys() == ["beta"]

    def test_clear_yes(self, runner: CliRunner, storage_home: Path) -> None:
        """clear --yes removes everything without asking."""
        invoke(runner, storage_home, "set", "alpha", "1")
        result = invoke(runner, storage_home, "clear", "--yes")
        assert result.exit_code == 0
        assert FileStore(storage_home / "store").keys() == []

    def test_clear_declined(self, runner: CliRunner, storage_home: Path) -> None:
        """Answering no to the prompt keeps the records."""
        invoke(runner, storage_home, "set", "alpha", "1")
        result = invoke(runner, storage_home, "clear", input="n\n")
        assert result.exit_code == 1
        assert FileStore(storage_home / "store").keys() == ["alpha"]


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


class TestWatch:
    """Following a key from the shell."""

    def test_watch_times_out(self, runner: CliRunner, storage_home: Path) -> None:
        """With nothing published, watch exits after the timeout."""
        result = invoke(
            runner, storage_home, "watch", "k", "--timeout", "0.2", "--interval", "0.05"
        )
        assert result.exit_code == 0
        assert "No updates." in result.output


# ---------------------------------------------------------------------------
# encode / decode
# ---------------------------------------------------------------------------


class TestCodecCommands:
    """The obfuscation codec from the shell."""

    def test_encode(self, runner: CliRunner, storage_home: Path) -> None:
        result = invoke(runner, storage_home, "--phrase", "p", "encode", "hello")
        assert result.exit_code == 0
        assert result.output.strip() == obfuscate.encode("p", "hello")

    def test_decode(self, runner: CliRunner, storage_home: Path) -> None:
        encoded = obfuscate.encode("p", "hello")
        result = invoke(runner, storage_home, "--phrase", "p", "decode", encoded)
        assert result.exit_code == 0
        assert result.output.strip() == "hello"

    def test_decode_wrong_phrase(self, runner: CliRunner, storage_home: Path) -> None:
        """Decoding with another phrase fails loudly."""
        encoded = obfuscate.encode("p", "hello")
        result = invoke(runner, storage_home, "--phrase", "other", "decode", encoded)
        assert result.exit_code == 1
        assert "Cannot decode" in result.output
