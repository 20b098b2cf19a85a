"""pixelmap CLI: run the server, run an accrual pass, inspect and paint pixels.

Usage:
    pixelmap serve                        # Run the API + socket server
    pixelmap accrue                       # One accrual pass against the DB
    pixelmap pixels                       # List painted pixels
    pixelmap paint 42 "#ff0000"           # Paint row 42 red
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:5500"


def _api_url() -> str:
    return os.environ.get("PIXELMAP_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0, headers=headers)


def _token_from_ctx(token: Optional[str]) -> str:
    """Resolve the access token from --token or PIXELMAP_TOKEN."""
    tok = token or os.environ.get("PIXELMAP_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set PIXELMAP_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table. columns: (header, dict_key, width)."""
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        click.echo("  ".join(str(row.get(k, "-"))[:w].ljust(w) for _, k, w in columns))


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="pixelmap", prog_name="pixelmap")
def main():
    """pixelmap: collaborative pixel canvas backend."""


@main.command()
@click.option("--host", default=None, help="Bind address (default from PIXELMAP_HOST)")
@click.option("--port", type=int, default=None, help="Port (default from PIXELMAP_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes (dev)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the HTTP + WebSocket server."""
    import uvicorn

    from pixelmap.config import settings

    uvicorn.run(
        "pixelmap.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command()
def accrue():
    """Run one accrual pass now (every user gets +1 point)."""
    from pixelmap.config import settings
    from pixelmap.db.engine import build_engine, build_session_factory
    from pixelmap.services.accrual import AccrualJob, SqlUserRepository

    async def _accrue():
        engine = build_engine(settings)
        try:
            job = AccrualJob(SqlUserRepository(build_session_factory(engine)))
            return await job.run_once()
        finally:
            await engine.dispose()

    result = asyncio.run(_accrue())
    color = "green" if result.failed == 0 else "yellow"
    click.secho(f"Accrual done: {result.updated} updated, {result.failed} failed", fg=color)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.option("--token", help="Access token (or set PIXELMAP_TOKEN)")
def pixels(as_json: bool, token: Optional[str]):
    """List painted pixels."""

    async def _list():
        async with _client(_token_from_ctx(token)) as c:
            r = await c.get("/api/v1/pixelmap")
            r.raise_for_status()
            return r.json()

    data = asyncio.run(_list())
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return
    if not data:
        click.echo("No pixels painted yet.")
        return
    _print_table(data, [("ROW", "row", 8), ("COLOR", "color", 9), ("STATE", "state", 12)])


@main.command()
@click.argument("row", type=int)
@click.argument("color")
@click.option("--state", default="claimed", show_default=True)
@click.option("--token", help="Access token (or set PIXELMAP_TOKEN)")
def paint(row: int, color: str, state: str, token: Optional[str]):
    """Paint ROW with COLOR (#rrggbb)."""

    async def _paint():
        async with _client(_token_from_ctx(token)) as c:
            r = await c.post(
                "/api/v1/pixelmap", json={"row": row, "color": color, "state": state}
            )
            if r.status_code >= 400:
                click.secho(f"Error {r.status_code}: {r.text}", fg="red", err=True)
                sys.exit(1)
            return r.json()

    pixel = asyncio.run(_paint())
    click.secho(f"Row {pixel['row']} → {pixel['color']} ({pixel['state']})", fg="green")


if __name__ == "__main__":
    main()
