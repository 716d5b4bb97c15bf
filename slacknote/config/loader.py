"""Configuration loading utilities."""

import json
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from loguru import logger

from slacknote.config.defaults import apply_missing_defaults
from slacknote.config.schema import Config

# Children of these sections are user data (emoji names, channel ids, tool
# keys) and keep their keys verbatim across case conversion.
_VERBATIM_KEY_SECTIONS = frozenset({"reactions", "tools", "channels", "profiles", "routes", "extra_headers", "extraHeaders"})

# Conventional deployment variables -> snake_case config path.
_ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "SLACK_BOT_TOKEN": ("slack", "bot_token"),
    "SLACK_USER_TOKEN": ("slack", "user_token"),
    "SLACK_SIGNING_SECRET": ("slack", "signing_secret"),
    "OPENAI_API_KEY": ("providers", "openai", "api_key"),
    "OPENAI_API_BASE": ("providers", "openai", "api_base"),
    "NOTION_TOKEN": ("notion", "token"),
    "NOTION_DATABASE_ID": ("notion", "database_id"),
    "NOTION_PARENT_PAGE_ID": ("notion", "parent_page_id"),
    "TRIGGER_REACTION": ("digest", "trigger_reaction"),
    "CHANNEL_TRIGGER_REACTION": ("digest", "channel_trigger_reaction"),
    "THREAD_COLLECT_REACTION": ("digest", "thread_collect_reaction"),
    "THREAD_COLLECT_LABEL": ("digest", "thread_collect_label"),
    "NOTION_TITLE_PREFIX": ("digest", "title_prefix"),
    "PORT": ("gateway", "port"),
    "LOG_LEVEL": ("logging", "level"),
}


def get_config_path() -> Path:
    """Get the default configuration file path."""
    from slacknote.utils.helpers import get_data_path
    return get_data_path() / "config.json"


def load_config(
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """
    Load configuration from file, apply environment overrides, validate.

    Args:
        config_path: Optional path to config file. Uses default if not provided.
        environ: Environment mapping for overrides. Defaults to ``os.environ``.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()
    env = os.environ if environ is None else environ

    raw: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise ValueError("Config root must be a JSON object")
            raw = loaded
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using defaults")
            raw = {}

    snake = convert_keys(raw)
    apply_missing_defaults(snake)
    apply_env_overrides(snake, env)
    return Config.model_validate(snake)


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = convert_to_camel(config.model_dump())
    tmp_path = path.with_name(f".{path.name}.tmp-{os.getpid()}")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    try:
        tmp_path.chmod(0o600)
    except OSError:
        pass
    os.replace(tmp_path, path)


def apply_env_overrides(snake: dict[str, Any], environ: Mapping[str, str]) -> None:
    """Overlay conventional environment variables onto a snake_case payload."""
    for var, path in _ENV_OVERRIDES.items():
        value = (environ.get(var) or "").strip()
        if value:
            _set_path(snake, path, value)

    reactions = parse_reactions(environ.get("REACTIONS") or "")
    if reactions:
        _set_path(snake, ("digest", "reactions"), reactions)

    channels = [c.strip() for c in (environ.get("REPORT_CHANNELS") or "").split(",") if c.strip()]
    if channels:
        _set_path(snake, ("reports", "channels"), channels)


def parse_reactions(value: str) -> dict[str, str]:
    """Parse ``bookmark:主題,thinking_face:検討`` into an emoji -> label map."""
    reactions: dict[str, str] = {}
    for pair in value.split(","):
        sep = pair.find(":")
        if sep > 0:
            emoji = pair[:sep].strip()
            label = pair[sep + 1 :].strip()
            if emoji and label:
                reactions[emoji] = label
    return reactions


def _set_path(data: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = data
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[path[-1]] = value


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {
            camel_to_snake(k): (_keep_keys(v, convert_keys) if k in _VERBATIM_KEY_SECTIONS else convert_keys(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {
            snake_to_camel(k): (_keep_keys(v, convert_to_camel) if k in _VERBATIM_KEY_SECTIONS else convert_to_camel(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


def _keep_keys(data: Any, convert: Callable[[Any], Any]) -> Any:
    """Keep this level's keys verbatim; convert the values below them."""
    if isinstance(data, dict):
        return {k: convert(v) for k, v in data.items()}
    return convert(data)
