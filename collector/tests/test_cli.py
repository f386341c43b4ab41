"""CLI tests for operator commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from collector.cli import app
from collector.config import settings
from collector.security.csrf import CsrfConfig, verify_csrf_token

runner = CliRunner()


@pytest.fixture
def cli_db(tmp_path: Path, monkeypatch):
    db_path = tmp_path / "collector_cli.db"
    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{db_path}")
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0, result.output
    return db_path


def test_create_org_form_and_whitelist(cli_db):
    result = runner.invoke(app, ["create-org", "Acme Inc"])
    assert result.exit_code == 0, result.output
    assert "acme-inc" in result.output

    result = runner.invoke(app, ["create-form", "acme-inc", "Contact Us", "--csrf", "--json"])
    assert result.exit_code == 0, result.output
    created = json.loads(result.output)
    assert created["slug"] == "contact-us"
    assert created["csrfEnabled"] is True
    assert len(created["submitHash"]) == 22

    result = runner.invoke(app, ["whitelist-add", "acme-inc", "acme.example"])
    assert result.exit_code == 0, result.output
    assert "acme.example" in result.output


def test_unknown_organization(cli_db):
    result = runner.invoke(app, ["create-form", "ghost", "Contact"])
    assert result.exit_code == 1
    assert "Organization not found" in result.output

    result = runner.invoke(app, ["whitelist-add", "ghost", "x.example"])
    assert result.exit_code == 1


def test_csrf_token_command(monkeypatch):
    monkeypatch.setattr(settings, "csrf_secret", "cli-secret")
    result = runner.invoke(app, ["csrf-token", "hash123", "https://a.example"])
    assert result.exit_code == 0, result.output

    token = result.output.splitlines()[0].strip()
    config = CsrfConfig.from_settings(settings)
    assert verify_csrf_token(config, token, "hash123", "https://a.example")


def test_csrf_token_without_secret(monkeypatch):
    monkeypatch.setattr(settings, "csrf_secret", None)
    result = runner.invoke(app, ["csrf-token", "hash123", "https://a.example"])
    assert result.exit_code == 1
    assert "COLLECTOR_CSRF_SECRET" in result.output
