"""HTTP surface: Slack event intake and status endpoints."""

from slacknote.api.server import create_app, run_server

__all__ = ["create_app", "run_server"]
