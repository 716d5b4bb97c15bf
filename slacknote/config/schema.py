"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings

from slacknote.config.defaults import (
    DEFAULT_DIGEST,
    DEFAULT_PACING,
    DEFAULT_REPORTS,
    default_model_profiles,
    default_model_routes,
    default_reactions,
)


def _default_model_profiles() -> dict[str, "ModelProfile"]:
    return {
        name: ModelProfile.model_validate(payload)
        for name, payload in default_model_profiles().items()
    }


class ModelProfile(BaseModel):
    """One model profile used for a specific capability route."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["chat"] = "chat"
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    timeout_ms: int | None = None
    json_mode: bool = False


class ModelRoutingConfig(BaseModel):
    """Capability-oriented model routing configuration."""

    model_config = ConfigDict(extra="ignore")

    profiles: dict[str, ModelProfile] = Field(default_factory=_default_model_profiles)
    routes: dict[str, str] = Field(default_factory=default_model_routes)

    @model_validator(mode="after")
    def _validate_routes(self) -> "ModelRoutingConfig":
        missing = sorted({name for name in self.routes.values() if name not in self.profiles})
        if missing:
            raise ValueError("models.routes references unknown profiles: " + ", ".join(missing))
        return self


class ProviderConfig(BaseModel):
    """LLM provider credentials."""

    model_config = ConfigDict(extra="ignore")

    api_key: str = ""
    api_base: str | None = None
    extra_headers: dict[str, str] | None = None


class ProvidersConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    openai: ProviderConfig = Field(default_factory=ProviderConfig)


class SlackConfig(BaseModel):
    """Slack workspace credentials and Web API settings."""

    model_config = ConfigDict(extra="ignore")

    bot_token: str = ""
    user_token: str = ""  # preferred for history reads in batch tools
    signing_secret: str = ""
    api_base: str = "https://slack.com/api"
    permalink_base: str = "https://app.slack.com"
    timeout_seconds: float = 30.0
    signature_max_skew_seconds: int = 300

    @property
    def history_token(self) -> str:
        return self.user_token or self.bot_token


class NotionConfig(BaseModel):
    """Notion integration settings."""

    model_config = ConfigDict(extra="ignore")

    token: str = ""
    database_id: str = ""
    parent_page_id: str = ""  # page under which import-mismatch creates its database
    title_property: str = "名前"
    api_base: str = "https://api.notion.com/v1"
    api_version: str = "2022-06-28"
    timeout_seconds: float = 30.0
    max_blocks_per_request: int = Field(default=100, ge=1, le=100)


class DigestConfig(BaseModel):
    """Reaction-driven conversation digests."""

    model_config = ConfigDict(extra="ignore")

    reactions: dict[str, str] = Field(default_factory=default_reactions)
    trigger_reaction: str = str(DEFAULT_DIGEST["trigger_reaction"])
    channel_trigger_reaction: str = str(DEFAULT_DIGEST["channel_trigger_reaction"])
    thread_collect_reaction: str = str(DEFAULT_DIGEST["thread_collect_reaction"])
    thread_collect_label: str = str(DEFAULT_DIGEST["thread_collect_label"])
    title_prefix: str = str(DEFAULT_DIGEST["title_prefix"])
    done_reaction: str = str(DEFAULT_DIGEST["done_reaction"])
    notify: bool = bool(DEFAULT_DIGEST["notify"])

    def label_guide(self) -> list[str]:
        """Distinct labels in configuration order."""
        labels: list[str] = []
        for label in [*self.reactions.values(), self.thread_collect_label]:
            if label and label not in labels:
                labels.append(label)
        return labels


class ReportLogRoutingConfig(BaseModel):
    """Report-log database routing table."""

    model_config = ConfigDict(extra="ignore")

    tools: dict[str, str] = Field(default_factory=dict)
    channels: dict[str, str] = Field(default_factory=dict)
    default: str = ""


class ReportsConfig(BaseModel):
    """Incident report detection in watched channels."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = bool(DEFAULT_REPORTS["enabled"])
    channels: list[str] = Field(default_factory=list)
    tool_key: str = str(DEFAULT_REPORTS["tool_key"])
    ack_reaction: str = str(DEFAULT_REPORTS["ack_reaction"])
    routing: ReportLogRoutingConfig = Field(default_factory=ReportLogRoutingConfig)

    def watches(self, channel: str) -> bool:
        return self.enabled and channel in self.channels


class PacingConfig(BaseModel):
    """Fixed delays between collaborator calls in batch tools."""

    model_config = ConfigDict(extra="ignore")

    page_size: int = Field(default=int(DEFAULT_PACING["page_size"]), ge=1, le=1000)
    page_delay_seconds: float = Field(default=float(DEFAULT_PACING["page_delay_seconds"]), ge=0)
    write_delay_seconds: float = Field(default=float(DEFAULT_PACING["write_delay_seconds"]), ge=0)


class GatewayConfig(BaseModel):
    """HTTP event intake settings."""

    model_config = ConfigDict(extra="ignore")

    host: str = "0.0.0.0"
    port: int = 3000
    status_token: str = ""  # bearer token for /status; empty disables auth


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = "INFO"
    file: bool = False


CredentialMode = Literal["serve", "backfill", "export", "enrich", "import"]


class Config(BaseSettings):
    """Root configuration for slacknote."""

    model_config = ConfigDict(
        extra="ignore", populate_by_name=True, env_prefix="SLACKNOTE_", env_nested_delimiter="__"
    )

    models: ModelRoutingConfig = Field(default_factory=ModelRoutingConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    notion: NotionConfig = Field(default_factory=NotionConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    reports: ReportsConfig = Field(default_factory=ReportsConfig)
    pacing: PacingConfig = Field(default_factory=PacingConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def missing_credentials(self, *, mode: CredentialMode = "serve") -> list[str]:
        """Return the environment variable names of credentials required for *mode*."""
        missing: list[str] = []
        if mode == "serve":
            checks = [
                ("SLACK_BOT_TOKEN", self.slack.bot_token),
                ("SLACK_SIGNING_SECRET", self.slack.signing_secret),
                ("OPENAI_API_KEY", self.providers.openai.api_key),
                ("NOTION_TOKEN", self.notion.token),
                ("NOTION_DATABASE_ID", self.notion.database_id),
            ]
        elif mode == "backfill":
            checks = [
                ("SLACK_USER_TOKEN or SLACK_BOT_TOKEN", self.slack.history_token),
                ("OPENAI_API_KEY", self.providers.openai.api_key),
                ("NOTION_TOKEN", self.notion.token),
            ]
        elif mode == "enrich":
            checks = [("NOTION_TOKEN", self.notion.token)]
        elif mode == "import":
            checks = [
                ("NOTION_TOKEN", self.notion.token),
                ("NOTION_PARENT_PAGE_ID", self.notion.parent_page_id),
            ]
        else:
            checks = [("SLACK_USER_TOKEN or SLACK_BOT_TOKEN", self.slack.history_token)]
        for name, value in checks:
            if not str(value or "").strip():
                missing.append(name)
        return missing

    @property
    def data_path(self) -> Path:
        from slacknote.utils.helpers import get_data_path
        return get_data_path()
