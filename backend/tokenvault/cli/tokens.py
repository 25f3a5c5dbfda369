"""Flask CLI commands for inspecting and revoking tokens by hand."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click
from flask.cli import with_appcontext

from tokenvault.core.extensions import get_manager
from tokenvault.models.token import MetaData
from tokenvault.services._shared.base import BaseEngine
from tokenvault.services._shared.errors import TokenError
from tokenvault.services.manager.dto import CredentialMode
from tokenvault.services.manager.service import TokenManager

LOGGER = logging.getLogger(__name__)

KINDS = ("access", "refresh", "token")


def _parse_fields(pairs: tuple[str, ...]) -> dict[str, str]:
    """Turn ``key=value`` arguments into a payload."""
    payload: dict[str, str] = {}
    for item in pairs:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint="--field")
        payload[key] = value
    return payload


def _resolve_kind(manager: TokenManager, kind: str | None) -> str:
    if kind is None:
        return "access" if manager.mode is CredentialMode.PAIR else "token"
    return kind


def _engine(manager: TokenManager, kind: str) -> BaseEngine:
    if kind == "access":
        return manager.access
    if kind == "refresh":
        return manager.refresh
    return manager.chain


@contextmanager
def _token_errors() -> Iterator[None]:
    """Report token errors as CLI errors (exit code 1) instead of tracebacks."""
    try:
        yield
    except TokenError as exc:
        LOGGER.debug("Token command failed", exc_info=True)
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True))


@click.group("tokens")
def tokens_cli() -> None:
    """Token maintenance commands."""


@tokens_cli.command("issue")
@click.option("--field", "fields", multiple=True, help="Payload field as key=value (repeatable).")
@click.option("--ttl", type=int, default=None, help="Lifetime in seconds.")
@with_appcontext
def issue_command(fields: tuple[str, ...], ttl: int | None) -> None:
    """Issue a credential of the configured shape and print its value(s)."""
    manager = get_manager()
    payload = _parse_fields(fields)
    with _token_errors():
        if manager.mode is CredentialMode.PAIR:
            issued = manager.issue_token_pair(payload, access_ttl=ttl)
            _echo_json(
                {
                    "access_token": issued.access.value,
                    "access_expires_at": issued.access.expires_at,
                    "refresh_token": issued.refresh.value,
                    "refresh_expires_at": issued.refresh.expires_at,
                }
            )
            return
        token = manager.make_token(MetaData(ttl=ttl), payload)
        _echo_json({"token": token.value, "expires_at": token.expires_at})


@tokens_cli.command("inspect")
@click.argument("value")
@click.option("--kind", type=click.Choice(KINDS), default=None, help="Token namespace.")
@with_appcontext
def inspect_command(value: str, kind: str | None) -> None:
    """Print the stored record of a token, metadata included."""
    manager = get_manager()
    with _token_errors():
        engine = _engine(manager, _resolve_kind(manager, kind))
        record = engine.get_all(value, include_metadata=True)
        remaining = engine.ttl_remaining(value)
    _echo_json({"key": engine.key(value), "ttl_remaining": remaining, "record": record})


@tokens_cli.command("revoke")
@click.argument("value")
@click.option("--kind", type=click.Choice(KINDS), default=None, help="Token namespace.")
@click.option("--cascade", is_flag=True, help="Chained tokens: also delete the child.")
@click.option(
    "--keep-access", is_flag=True, help="Refresh tokens: keep the bound access token."
)
@with_appcontext
def revoke_command(value: str, kind: str | None, cascade: bool, keep_access: bool) -> None:
    """Revoke a token; revoking an absent token is not an error."""
    manager = get_manager()
    kind = _resolve_kind(manager, kind)
    with _token_errors():
        engine = _engine(manager, kind)
        if kind == "refresh":
            manager.revoke_refresh_token(value, also_access_token=not keep_access)
        elif kind == "token":
            manager.destroy_token(value, cascade=cascade)
        else:
            manager.revoke_access_token(value)
    click.echo(f"Revoked {engine.kind} token {engine.redact(value)}")


__all__ = ["tokens_cli"]
