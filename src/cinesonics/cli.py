from __future__ import annotations

from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.panel import Panel
from rich.table import Table

from .config import settings


app = typer.Typer(add_completion=False, help="Cinesonics soundtrack proxy CLI")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from CINESONICS_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Listen port (default from PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the API server."""
    if not settings.pollinations_api_key:
        rprint("[yellow]POLLINATIONS_API_KEY is not set; /api/generate will report a configuration error.")
    uvicorn.run("cinesonics.api:app", host=host or settings.host, port=port or settings.port, reload=reload)


@app.command()
def info():
    """Show current configuration (API key redacted)."""
    t = Table(title="Cinesonics Configuration")
    t.add_column("setting")
    t.add_column("value")
    for k, v in settings.redacted().items():
        t.add_row(k, str(v))
    rprint(t)


@app.command()
def limits():
    """Describe the daily generation limits."""
    body = (
        f"Per client: {settings.user_limit} generations/day\n"
        f"Site-wide:  {settings.global_limit} generations/day\n"
        f"Both reset at midnight UTC\n"
        f"Cover tokens: single use, expire after {int(settings.cover_ttl_seconds)}s"
    )
    rprint(Panel.fit(body, title="Limits"))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
