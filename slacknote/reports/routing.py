"""Report-log target resolution."""

from __future__ import annotations

import os
from collections.abc import Mapping

from slacknote.config.defaults import REPORT_LOG_ENV_FALLBACK
from slacknote.config.schema import ReportLogRoutingConfig
from slacknote.core.errors import RoutingUnconfiguredError


def resolve_route(
    tool_key: str,
    channel_id: str,
    routing: ReportLogRoutingConfig,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Resolve the report-log database for a tool/channel pair.

    Precedence:
      1) routing.tools[tool_key]
      2) routing.channels[channel_id]
      3) routing.default
      4) $NOTION_REPORT_LOG_DB_ID

    Raises:
        RoutingUnconfiguredError: when every source is empty.
    """
    env = os.environ if environ is None else environ
    candidates = (
        routing.tools.get(tool_key) if tool_key else None,
        routing.channels.get(channel_id) if channel_id else None,
        routing.default,
        env.get(REPORT_LOG_ENV_FALLBACK),
    )
    for candidate in candidates:
        value = (candidate or "").strip()
        if value:
            return value
    raise RoutingUnconfiguredError(tool_key, channel_id)
