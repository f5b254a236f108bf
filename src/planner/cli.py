"""CLI for the planner API: run the server and check configuration."""

from __future__ import annotations

import logging
import sys

import click
import uvicorn

from planner import __version__
from planner.config import ConfigError, load_config
from planner.core.logging import configure_logging

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Planner: conversational task planning with Google Calendar write-back."""


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on")
@click.option("--log-level", default=None, help="Override LOG_LEVEL (e.g. DEBUG)")
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default=None,
    help="Override LOG_FORMAT",
)
def serve(host: str, port: int, log_level: str | None, log_format: str | None) -> None:
    """Run the planner API under uvicorn."""
    try:
        config = load_config()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    level = (log_level or config.logging.level).upper()
    configure_logging(level=level, fmt=log_format or config.logging.format)

    # Imported late so configure_logging() runs before the app modules log anything.
    from planner.api.app import create_app

    app = create_app(config)
    logger.info("Serving planner API on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_config=None, log_level=level.lower())


@cli.command("check-config")
def check_config() -> None:
    """Validate the environment configuration and print a redacted summary."""
    try:
        config = load_config()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    click.echo("Configuration OK")
    click.echo(f"  model:        {config.model}")
    click.echo(f"  timezone:     {config.timezone}")
    click.echo(f"  redirect_uri: {config.redirect_uri}")
    click.echo(f"  cors_origins: {', '.join(config.cors_origins)}")
    click.echo(f"  dashboard:    {config.dashboard_url or '(JSON responses)'}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
