"""slacknote - Slack reactions to Notion digests and report logs."""

__version__ = "0.1.0"
__logo__ = "🗒️"
