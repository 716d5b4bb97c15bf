"""Centralized opinionated defaults for generated config files."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

DEFAULT_SUMMARY_MODEL = "openai/gpt-4o-mini"
DEFAULT_EXTRACT_MODEL = "openai/gpt-4o-mini"

DEFAULT_MODEL_PROFILES: dict[str, dict[str, Any]] = {
    "digest_summary": {
        "kind": "chat",
        "model": DEFAULT_SUMMARY_MODEL,
        "max_tokens": 2000,
        "temperature": 0.3,
        "timeout_ms": 60000,
    },
    "report_extract": {
        "kind": "chat",
        "model": DEFAULT_EXTRACT_MODEL,
        "max_tokens": 1500,
        "temperature": 0.0,
        "timeout_ms": 30000,
        "json_mode": True,
    },
}

DEFAULT_MODEL_ROUTES: dict[str, str] = {
    "digest.summarize": "digest_summary",
    "reports.extract": "report_extract",
}

# emoji name -> label attached to buffered fragments
DEFAULT_REACTIONS: dict[str, str] = {
    "bookmark": "主題",
    "thinking_face": "検討",
    "memo": "要件",
}

DEFAULT_DIGEST: dict[str, Any] = {
    "reactions": DEFAULT_REACTIONS,
    "trigger_reaction": "notion",
    "channel_trigger_reaction": "card_file_box",
    "thread_collect_reaction": "thread",
    "thread_collect_label": "スレッド",
    "title_prefix": "Slackまとめ",
    "done_reaction": "white_check_mark",
    "notify": True,
}

DEFAULT_REPORTS: dict[str, Any] = {
    "enabled": True,
    "channels": [],
    "tool_key": "report_detect",
    "ack_reaction": "",
    "routing": {"tools": {}, "channels": {}, "default": ""},
}

DEFAULT_PACING: dict[str, Any] = {
    "page_size": 200,
    "page_delay_seconds": 0.2,
    "write_delay_seconds": 0.15,
}

REPORT_LOG_ENV_FALLBACK = "NOTION_REPORT_LOG_DB_ID"


def default_model_profiles() -> dict[str, dict[str, Any]]:
    return deepcopy(DEFAULT_MODEL_PROFILES)


def default_model_routes() -> dict[str, str]:
    return dict(DEFAULT_MODEL_ROUTES)


def default_reactions() -> dict[str, str]:
    return dict(DEFAULT_REACTIONS)


def apply_missing_defaults(snake_config: dict[str, Any]) -> None:
    """Seed missing sections in a snake_case config payload (in place)."""
    models = snake_config.setdefault("models", {})
    if isinstance(models, dict):
        profiles = models.setdefault("profiles", {})
        if isinstance(profiles, dict):
            for name, payload in default_model_profiles().items():
                current = profiles.get(name)
                if not isinstance(current, dict):
                    profiles[name] = payload
                else:
                    for k, v in payload.items():
                        current.setdefault(k, v)
        routes = models.setdefault("routes", {})
        if isinstance(routes, dict):
            for route, profile_name in default_model_routes().items():
                routes.setdefault(route, profile_name)

    for section, seeded in (
        ("digest", DEFAULT_DIGEST),
        ("reports", DEFAULT_REPORTS),
        ("pacing", DEFAULT_PACING),
    ):
        current = snake_config.setdefault(section, {})
        if not isinstance(current, dict):
            snake_config[section] = deepcopy(seeded)
            continue
        for k, v in seeded.items():
            current.setdefault(k, deepcopy(v))
