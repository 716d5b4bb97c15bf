"""Entry point for ``python -m slacknote``."""

from slacknote.cli.commands import app

if __name__ == "__main__":
    app()
