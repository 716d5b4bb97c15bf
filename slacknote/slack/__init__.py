"""Slack adapters: Web API client, event routing, request signatures."""

from slacknote.slack.client import SlackClient
from slacknote.slack.events import SlackEventRouter
from slacknote.slack.signature import verify_signature

__all__ = ["SlackClient", "SlackEventRouter", "verify_signature"]
