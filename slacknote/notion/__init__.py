"""Notion adapters: REST client, schema roles, Markdown blocks."""

from slacknote.notion.client import NotionClient

__all__ = ["NotionClient"]
