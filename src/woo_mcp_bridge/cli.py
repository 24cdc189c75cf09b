"""Command-line interface for the WooCommerce MCP server and bridge."""
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import uvicorn
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import Settings
from .errors import ConfigurationError
from .server import create_app

console = Console(stderr=True)

SECRET_FIELDS = ("wc_key", "wc_secret", "mcp_upstream_token")


def setup_logging(level: str) -> None:
    """Configure logging with rich output."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=[
            RichHandler(
                console=console,
                show_time=True,
                show_path=False,
                rich_tracebacks=True
            )
        ]
    )


def load_env_file(env_file: Path) -> None:
    """Load ``env_file``, or the nearest .env found walking up from the cwd."""
    if env_file.exists():
        load_dotenv(env_file)
        return

    current = Path.cwd()
    while current != current.parent:
        candidate = current / ".env"
        if candidate.exists():
            load_dotenv(candidate)
            break
        current = current.parent


def print_settings(settings: Settings) -> None:
    table = Table(title="Resolved configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for name, value in settings.model_dump().items():
        if name in SECRET_FIELDS and value:
            value = value[:4] + "..."
        table.add_row(name.upper(), "" if value is None else str(value))

    console.print(table)


@click.command()
@click.option(
    "--env-file",
    type=click.Path(exists=False, path_type=Path),
    default=".env",
    help="Path to .env file with configuration"
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level (overrides LOG_LEVEL)"
)
@click.option(
    "--mode",
    type=click.Choice(["minimal", "store", "bridge"], case_sensitive=False),
    default=None,
    help="Server mode (overrides MCP_MODE)"
)
@click.option(
    "--host",
    default=None,
    help="Listening interface (overrides HOST)"
)
@click.option(
    "--port",
    type=int,
    default=None,
    help="Listening port (overrides PORT)"
)
@click.option(
    "--check-config",
    is_flag=True,
    help="Validate configuration, print it and exit"
)
def main(
    env_file: Path,
    log_level: Optional[str],
    mode: Optional[str],
    host: Optional[str],
    port: Optional[int],
    check_config: bool
) -> None:
    """
    MCP tool server for a WooCommerce store, with an optional streaming bridge.

    In minimal mode only the ping and time tools are served. Store mode adds
    the catalog tools backed by the WooCommerce REST API. Bridge mode relays
    POSTed JSON-RPC requests to MCP_UPSTREAM_URL and streams the answer back.
    """
    load_env_file(env_file)

    overrides = {}
    if log_level:
        overrides["log_level"] = log_level.upper()
    if mode:
        overrides["mcp_mode"] = mode.lower()
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port

    try:
        settings = Settings(**overrides)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(1)

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    if check_config:
        print_settings(settings)
        console.print("[green]✓[/green] Configuration is valid")
        return

    app = create_app(settings)

    logger.info(f"Starting MCP server in {settings.mcp_mode} mode")
    logger.info(f"MCP SSE running at http://{settings.host}:{settings.port}/sse")
    if settings.mcp_mode == "store":
        logger.info(f"Store API: {settings.store_api_url}")
    elif settings.mcp_mode == "bridge":
        logger.info(f"Relaying POST requests to {settings.mcp_upstream_url}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        timeout_keep_alive=settings.keep_alive_timeout,
        log_config=None
    )


if __name__ == "__main__":
    main()
