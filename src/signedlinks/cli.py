"""signedlinks CLI - Sign and check links, inspect root URL normalization."""

import json
import sys
import time
import tomllib
from pathlib import Path
from typing import Any, cast
from urllib.parse import urlsplit, urlunsplit

import click
from rich.console import Console
from rich.table import Table
from starlette.requests import Request

from signedlinks.common.errors import MissingKeyError
from signedlinks.common.http import request_from_url
from signedlinks.common.logging import setup_logging
from signedlinks.common.settings import Settings
from signedlinks.root_url import RootUrl, normalize_root_url
from signedlinks.signing import (
    EXPIRES_PARAM,
    SignatureVerifier,
    canonical_url,
    signature_has_not_expired,
)

console = Console()
err_console = Console(stderr=True)


def _load_config(path: str | None) -> dict[str, Any]:
    if not path:
        return {}
    config_path = Path(path).expanduser()
    if not config_path.exists():
        err_console.print(f"[red]Config not found: {config_path}[/red]")
        sys.exit(1)

    raw = config_path.read_bytes()
    if config_path.suffix.lower() == ".toml":
        data = tomllib.loads(raw.decode("utf-8"))
    else:
        data = json.loads(raw.decode("utf-8"))

    if isinstance(data, dict) and isinstance(data.get("cli"), dict):
        return cast(dict[str, Any], data["cli"])
    return cast(dict[str, Any], data) if isinstance(data, dict) else {}


def _verifier(ctx: click.Context) -> SignatureVerifier:
    settings: Settings = ctx.obj["settings"]
    root_url = normalize_root_url(settings.app_url, settings.app_env, running_in_console=True)
    return SignatureVerifier(
        settings.signing_key,
        root_url,
        ignore_query=settings.signature_ignore_query,
    )


def _request_behind_root(url: str, root_url: RootUrl) -> Request:
    """Build the request the application sees for a public URL.

    A forced root with a path prefix is stripped by the proxy in front of the
    application, so the prefix is removed from the path here as well.
    """
    prefix = urlsplit(root_url.root).path.rstrip("/") if root_url.root else ""
    parts = urlsplit(url)
    if prefix and (parts.path == prefix or parts.path.startswith(prefix + "/")):
        url = urlunsplit(parts._replace(path=parts.path[len(prefix):] or "/"))
    return request_from_url(url)


@click.group()
@click.option("--key", envvar="SIGNEDLINKS_APP_KEY", help="Signing key (defaults to settings)")
@click.option("--app-url", default=None, help="Public application base URL")
@click.option("--env", "app_env", default=None, help="Environment name, e.g. production")
@click.option(
    "--config",
    type=click.Path(exists=False, dir_okay=False),
    help="Path to CLI config (JSON or TOML with optional [cli] section)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    key: str | None,
    app_url: str | None,
    app_env: str | None,
    config: str | None,
) -> None:
    """signedlinks CLI - Sign, verify and inspect links."""
    config_data = _load_config(config)
    overrides: dict[str, Any] = {"running_in_console": True}
    key = key or config_data.get("app_key")
    app_url = app_url or config_data.get("app_url")
    app_env = app_env or config_data.get("app_env")
    if key:
        overrides["app_key"] = key
    if app_url:
        overrides["app_url"] = app_url
    if app_env:
        overrides["app_env"] = app_env

    settings = Settings(**overrides)
    # stdout carries command output only.
    setup_logging(settings.log_level, settings.log_json, stream=sys.stderr)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# === Links ===


@cli.command("sign")
@click.argument("url")
@click.option("--expires-in", type=int, default=None, help="Lifetime in seconds")
@click.pass_context
def sign_link(ctx: click.Context, url: str, expires_in: int | None) -> None:
    """Sign an already generated URL."""
    settings: Settings = ctx.obj["settings"]
    if expires_in is None:
        expires_in = settings.link_ttl_seconds
    expires_at = int(time.time()) + expires_in if expires_in is not None else None

    try:
        signed = _verifier(ctx).sign(url, expires_at)
    except MissingKeyError as exc:
        err_console.print(f"[red]{exc}[/red]")
        sys.exit(2)
    except ValueError as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    click.echo(signed)


@cli.command("verify")
@click.argument("url")
@click.option("--relative", is_flag=True, help="Verify against the path only")
@click.option("--ignore", multiple=True, help="Query parameter to exclude (repeatable)")
@click.pass_context
def verify_link(ctx: click.Context, url: str, relative: bool, ignore: tuple[str, ...]) -> None:
    """Check a signed URL's signature and expiry."""
    verifier = _verifier(ctx)
    absolute = not relative
    if absolute:
        request = _request_behind_root(url, verifier.root_url)
    else:
        request = request_from_url(url)

    try:
        signature_ok = verifier.verify(request, absolute=absolute, ignore_query=ignore)
    except MissingKeyError as exc:
        err_console.print(f"[red]{exc}[/red]")
        sys.exit(2)
    not_expired = signature_has_not_expired(request)

    table = Table(title="Signed URL")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    table.add_row(
        "Canonical URL",
        canonical_url(request, verifier.root_url, absolute, ignore),
    )
    table.add_row("Signature", "[green]valid[/green]" if signature_ok else "[red]invalid[/red]")
    expires = request.query_params.get(EXPIRES_PARAM)
    if expires:
        table.add_row(
            "Expires",
            f"{expires} " + ("[green](active)[/green]" if not_expired else "[red](expired)[/red]"),
        )
    else:
        table.add_row("Expires", "never")
    console.print(table)

    if not (signature_ok and not_expired):
        sys.exit(1)


# === Root URL ===


@cli.command("root-url")
@click.option("--request-host", default=None, help="Host of a hypothetical inbound request")
@click.pass_context
def show_root_url(ctx: click.Context, request_host: str | None) -> None:
    """Show how generated URLs will be rooted."""
    settings: Settings = ctx.obj["settings"]
    root_url = normalize_root_url(
        settings.app_url,
        settings.app_env,
        running_in_console=request_host is None,
    )

    table = Table(title=f"Root URL ({settings.app_env})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for name, value in root_url.describe().items():
        table.add_row(name, "-" if value is None else str(value))

    if request_host:
        request = request_from_url(f"http://{request_host}/")
        if root_url.mark_secure:
            request.scope["scheme"] = "https"
        table.add_row("resolved", root_url.base_for(request))
    console.print(table)


@cli.command("serve")
@click.option("--host", default=None, help="Bind host")
@click.option("--port", type=int, default=None, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the signed link service."""
    import uvicorn

    from signedlinks.server.main import create_app

    settings: Settings = ctx.obj["settings"].model_copy(update={"running_in_console": False})
    setup_logging(settings.log_level, settings.log_json)
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


def main() -> None:
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
