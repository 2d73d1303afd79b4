import asyncio

import pytest
from typer.testing import CliRunner

from jobrelay.cli import app
from jobrelay.contracts import Role
from jobrelay.persistence import SQLiteRepository
from jobrelay.security import SessionCodec


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "jobrelay.db"
    monkeypatch.setenv("JOBRELAY_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("JOBRELAY_DATABASE_URL", f"sqlite://{path}")
    monkeypatch.setenv("JOBRELAY_SESSION_SECRET", "cli-secret")
    return path


def test_keys_issue_and_revoke(db_path):
    runner = CliRunner()
    result = runner.invoke(
        app, ["keys", "issue", "automation", "-p", "automation", "-p", "refresh-api-key"]
    )
    assert result.exit_code == 0, f"Output: {result.stdout}"
    line = [l for l in result.stdout.splitlines() if "\t" in l][-1]
    key_id, token, _ = line.split("\t")

    repo = SQLiteRepository(str(db_path))
    stored = asyncio.run(repo.get_api_key(key_id))
    assert stored.token == token
    assert stored.permissions == ["automation", "refresh-api-key"]

    result = runner.invoke(app, ["keys", "revoke", key_id])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert f"Revoked {key_id} (automation)" in result.stdout
    assert asyncio.run(repo.get_api_key(key_id)).is_revoked
    repo.close()


def test_keys_revoke_unknown_key_fails(db_path):
    runner = CliRunner()
    result = runner.invoke(app, ["keys", "revoke", "missing"])
    assert result.exit_code == 1
    assert "API key not found" in result.stdout


def test_session_token_is_decodable_and_remembers_user(db_path):
    runner = CliRunner()
    result = runner.invoke(app, ["session-token", "alice", "--role", "admin"])
    assert result.exit_code == 0, f"Output: {result.stdout}"

    principal = SessionCodec("cli-secret").decode(result.stdout.strip().splitlines()[-1])
    assert principal.user_id == "alice"
    assert principal.role == Role.ADMIN

    repo = SQLiteRepository(str(db_path))
    assert asyncio.run(repo.get_user("alice")).role == Role.ADMIN
    repo.close()


def test_session_token_requires_secret(db_path, monkeypatch):
    monkeypatch.setenv("JOBRELAY_SESSION_SECRET", "")
    result = CliRunner().invoke(app, ["session-token", "alice"])
    assert result.exit_code == 1
    assert "session_secret" in result.stdout
