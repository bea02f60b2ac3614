from __future__ import annotations

import json
import os

import pytest
from typer.testing import CliRunner

from calboard.cli import app

runner = CliRunner()


@pytest.fixture()
def configured_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("CALBOARD_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("CALBOARD_BASE_DIR", str(tmp_path))
    monkeypatch.setenv("CALBOARD_API_KEY", "cli-key")
    monkeypatch.setenv("CALBOARD_AUTH_DOMAIN", "localhost")
    monkeypatch.setenv("CALBOARD_PROJECT_ID", "cli-project")
    monkeypatch.setenv("CALBOARD_APP_ID", "cli-app")
    monkeypatch.setenv("CALBOARD_DATABASE_URL", f"sqlite:///{tmp_path / 'cli.sqlite'}")
    monkeypatch.setenv("CALBOARD_SESSION_SECRET", "cli-secret")
    return tmp_path


def test_show_config_masks_secrets(configured_env):
    result = runner.invoke(app, ["show-config"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["api_key"] == "********"
    assert data["project_id"] == "cli-project"


def test_invite_and_list_invitations(configured_env):
    result = runner.invoke(app, ["invite", "--count", "2", "--note", "lab"])
    assert result.exit_code == 0, result.output
    ids = [line.split("\t")[0] for line in result.stdout.strip().splitlines()]
    assert len(ids) == 2

    listed = runner.invoke(app, ["invitations", "--unused"])
    assert listed.exit_code == 0
    for invitation_id in ids:
        assert f"{invitation_id}\tunused (lab)" in listed.stdout


def test_missing_configuration_exits_with_error(configured_env, monkeypatch):
    monkeypatch.delenv("CALBOARD_SESSION_SECRET")
    result = runner.invoke(app, ["purge-sessions"])
    assert result.exit_code == 1
    assert "CALBOARD_SESSION_SECRET" in result.output


def test_upgrade_db_reports_actions(configured_env):
    result = runner.invoke(app, ["upgrade-db", "--no-backup"])
    assert result.exit_code == 0
    assert "Ran Alembic upgrade to head (fresh database)" in result.stdout
