"""Tests for the idp-resolver command line."""

import textwrap
from pathlib import Path

from typer.testing import CliRunner

from idp_resolver.cli import app

runner = CliRunner()

IDP = "https://idp.example.org"
RP = "https://sp.example.org"
EXPECTED = "DOmoTgGARvxCRm6QI2uEQsyuT8w="


def _config(tmp_path: Path) -> Path:
    path = tmp_path / "resolver.yaml"
    path.write_text(
        textwrap.dedent(
            """
            connectors:
              - type: principal
                id: principal
              - type: stored_id
                id: stored
                salt_base64: AAECAwQFBgcICQoLDA0ODw==
                source_attribute_id: principal
                generated_attribute_id: pairwiseId
                dependencies: [{plugin: principal}]
            definitions:
              - type: simple
                id: pairwiseId
                dependencies: [{plugin: stored}]
            """
        )
    )
    return path


def _resolve(config: Path, db: Path):
    return runner.invoke(
        app,
        ["resolve", "--config", str(config), "--principal", "testuser", "--idp", IDP, "--rp", RP, "--db", str(db)],
    )


def test_init_creates_store(tmp_path: Path) -> None:
    db = tmp_path / "nested" / "identifiers.db"
    result = runner.invoke(app, ["init", "--db", str(db)])
    assert result.exit_code == 0
    assert db.exists()


def test_resolve_prints_attributes(tmp_path: Path) -> None:
    result = _resolve(_config(tmp_path), tmp_path / "identifiers.db")
    assert result.exit_code == 0, result.output
    assert "pairwiseId" in result.output
    assert EXPECTED in result.output


def test_rotation_from_command_line(tmp_path: Path) -> None:
    config = _config(tmp_path)
    db = tmp_path / "identifiers.db"
    assert _resolve(config, db).exit_code == 0

    lookup = runner.invoke(app, ["lookup", "--idp", IDP, "--rp", RP, "--identifier", EXPECTED, "--db", str(db)])
    assert lookup.exit_code == 0
    assert "testuser" in lookup.output

    deactivated = runner.invoke(
        app, ["deactivate", "--idp", IDP, "--rp", RP, "--identifier", EXPECTED, "--db", str(db)]
    )
    assert deactivated.exit_code == 0, deactivated.output

    rotated = _resolve(config, db)
    assert rotated.exit_code == 0
    assert EXPECTED not in rotated.output

    status = runner.invoke(app, ["status", "--db", str(db)])
    assert status.exit_code == 0
    assert "1 active, 1 deactivated" in status.output


def test_deactivate_unknown_identifier_fails(tmp_path: Path) -> None:
    db = tmp_path / "identifiers.db"
    result = runner.invoke(app, ["deactivate", "--idp", IDP, "--rp", RP, "--identifier", "nope", "--db", str(db)])
    assert result.exit_code == 1


def test_deactivate_rejects_bad_timestamp(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["deactivate", "--idp", IDP, "--rp", RP, "--identifier", "x", "--as-of", "yesterday", "--db", str(tmp_path / "i.db")],
    )
    assert result.exit_code != 0


def test_status_on_empty_store(tmp_path: Path) -> None:
    result = runner.invoke(app, ["status", "--db", str(tmp_path / "identifiers.db")])
    assert result.exit_code == 0
    assert "No identifiers" in result.output


def test_resolve_reports_bad_salt(tmp_path: Path) -> None:
    config = _config(tmp_path)
    config.write_text(config.read_text().replace("AAECAwQFBgcICQoLDA0ODw==", "not base64!"))
    result = _resolve(config, tmp_path / "identifiers.db")
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
    assert "salt_base64" in result.output


def test_resolve_reports_unknown_plugin_type(tmp_path: Path) -> None:
    config = tmp_path / "resolver.yaml"
    config.write_text("connectors:\n  - type: ldap\n    id: directory\n")
    result = _resolve(config, tmp_path / "identifiers.db")
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_resolve_reports_malformed_yaml(tmp_path: Path) -> None:
    config = tmp_path / "resolver.yaml"
    config.write_text("connectors: [unclosed\n")
    result = _resolve(config, tmp_path / "identifiers.db")
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
