"""Command line interface for running and administering jobrelay."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional

import typer

from jobrelay import ApiKeyAuthority, get_repository, load_config
from jobrelay.contracts import Principal, Role
from jobrelay.errors import NotFoundError
from jobrelay.persistence import UserRecord
from jobrelay.security import SessionCodec

app = typer.Typer(help="CLI for the jobrelay coordination service")

keys_app = typer.Typer(help="Commands for managing API keys")
app.add_typer(keys_app, name="keys")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@app.callback()
def main(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    """jobrelay CLI entry point."""
    if config:
        os.environ["JOBRELAY_CONFIG"] = config
    configure_logging(log_level or load_config().log_level)


@app.command("serve")
def serve(
    host: str = "127.0.0.1",
    port: int = 8000,
    reload: bool = False,
) -> None:
    """
    Run the HTTP API with uvicorn.

    Example:
        jobrelay serve --host 0.0.0.0 --port 8000
    """
    import uvicorn

    typer.echo(f"Starting jobrelay on {host}:{port}")
    uvicorn.run(
        "jobrelay.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@keys_app.command("issue")
def keys_issue(
    application: str,
    permission: List[str] = typer.Option([], "--permission", "-p"),
    ttl_days: Optional[int] = None,
) -> None:
    """
    Issue an API key for APPLICATION.

    Example:
        jobrelay keys issue automation -p automation -p refresh-api-key
    """
    config = load_config()
    repository = get_repository(config=config)
    authority = ApiKeyAuthority(repository, ttl_days=config.security.api_key_ttl_days)
    record = asyncio.run(authority.issue(application, permission, ttl_days))
    typer.echo(f"{record.id}\t{record.token}\texpires {record.expires_at.isoformat()}")


@keys_app.command("revoke")
def keys_revoke(key_id: str) -> None:
    """Revoke the API key with KEY_ID."""
    config = load_config()
    repository = get_repository(config=config)
    authority = ApiKeyAuthority(repository)
    try:
        record = asyncio.run(authority.revoke(key_id))
    except NotFoundError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Revoked {record.id} ({record.application})")


@app.command("session-token")
def session_token(
    user_id: str,
    role: Role = Role.MANAGEMENT,
    ttl_seconds: int = 3600,
) -> None:
    """
    Mint a bearer session token for USER_ID and remember the user.

    Example:
        jobrelay session-token alice --role admin
    """
    config = load_config()
    if not config.security.session_secret:
        typer.secho("security.session_secret is not configured", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    repository = get_repository(config=config)
    asyncio.run(repository.save_user(UserRecord(id=user_id, role=role)))
    codec = SessionCodec(config.security.session_secret, config.security.session_algorithm)
    typer.echo(codec.encode(Principal(user_id=user_id, role=role), ttl_seconds))


if __name__ == "__main__":
    app()
