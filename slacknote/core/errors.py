"""Error taxonomy for slacknote collaborators and configuration."""

from __future__ import annotations


class SlacknoteError(Exception):
    """Base class for all slacknote errors."""


class ConfigurationError(SlacknoteError):
    """Required configuration (credentials, routing) is missing or invalid."""

    def __init__(self, message: str, *, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class RoutingUnconfiguredError(ConfigurationError):
    """No report-log target could be resolved for a tool/channel pair."""

    def __init__(self, tool_key: str, channel_id: str) -> None:
        super().__init__(
            f"no report-log target configured for tool={tool_key!r} channel={channel_id!r}"
        )
        self.tool_key = tool_key
        self.channel_id = channel_id


class SlackAPIError(SlacknoteError):
    """Slack Web API returned ``ok: false`` or a transport failure."""

    def __init__(self, method: str, error_code: str) -> None:
        super().__init__(f"slack {method} failed: {error_code}")
        self.method = method
        self.error_code = error_code


class NotionAPIError(SlacknoteError):
    """Notion REST API returned a non-2xx response."""

    def __init__(self, status: int, code: str, message: str = "") -> None:
        super().__init__(f"notion API error {status} {code}: {message}".rstrip(": "))
        self.status = status
        self.code = code
