"""Shared CLI application context and setup helpers."""

from typing import NoReturn

import typer
from dotenv import load_dotenv
from rich.console import Console

from slacknote import __logo__, __version__

app = typer.Typer(
    name="slacknote",
    help=f"{__logo__} slacknote - Slack reactions to Notion digests and report logs",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} slacknote v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
    """slacknote - Slack reactions to Notion digests and report logs."""
    from slacknote.utils.helpers import get_data_path

    # Existing variables win; the working directory beats ~/.slacknote/.env.
    load_dotenv(override=False)
    load_dotenv(get_data_path() / ".env", override=False)


def load_runtime_config():
    """Load config and install logging for a command run."""
    from slacknote.config.loader import load_config
    from slacknote.utils.logging import setup_logging

    config = load_config()
    setup_logging(config.logging.level, to_file=config.logging.file)
    return config


def fail(message: str, missing: list[str] | None = None) -> NoReturn:
    """Print an error (and missing variables) and exit with status 1."""
    console.print(f"[red]Error:[/red] {message}")
    for name in missing or []:
        console.print(f"  [red]✗[/red] {name}")
    raise typer.Exit(1)
