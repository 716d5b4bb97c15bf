"""Runtime wiring: adapters, pipelines and the event router from one Config."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from slacknote.aggregation.pipeline import AggregationPipeline
from slacknote.core.errors import ConfigurationError
from slacknote.notion.client import NotionClient
from slacknote.providers.factory import ProviderFactory
from slacknote.providers.summarizer import ROUTE_KEY as SUMMARIZE_ROUTE
from slacknote.providers.summarizer import LLMSummarizer
from slacknote.reports.backfill import BackfillPipeline
from slacknote.reports.extractor import ROUTE_KEY as EXTRACT_ROUTE
from slacknote.reports.extractor import ReportExtractor
from slacknote.reports.pipeline import ReportPipeline
from slacknote.slack.client import SlackClient
from slacknote.slack.events import SlackEventRouter

if TYPE_CHECKING:
    from slacknote.config.schema import Config, CredentialMode


def require_credentials(config: "Config", mode: "CredentialMode") -> None:
    """Raise :class:`ConfigurationError` listing every missing credential."""
    missing = config.missing_credentials(mode=mode)
    if missing:
        raise ConfigurationError(f"missing required settings for {mode}: {', '.join(missing)}", missing=missing)


def build_slack_client(config: "Config", *, history: bool = False) -> SlackClient:
    token = config.slack.history_token if history else config.slack.bot_token
    return SlackClient(
        token,
        api_base=config.slack.api_base,
        permalink_base=config.slack.permalink_base,
        timeout_seconds=config.slack.timeout_seconds,
    )


def build_notion_client(config: "Config") -> NotionClient:
    n = config.notion
    return NotionClient(
        n.token,
        database_id=n.database_id,
        title_property=n.title_property,
        api_base=n.api_base,
        api_version=n.api_version,
        timeout_seconds=n.timeout_seconds,
        max_blocks_per_request=n.max_blocks_per_request,
    )


def build_summarizer(config: "Config") -> LLMSummarizer:
    factory = ProviderFactory(config)
    name, profile = factory.resolve_profile(SUMMARIZE_ROUTE)
    logger.debug("summarizer uses profile {} ({})", name, profile.model)
    return LLMSummarizer(provider=factory.create_chat_provider(profile.model or ""), profile=profile)


def build_extractor(config: "Config") -> ReportExtractor:
    factory = ProviderFactory(config)
    name, profile = factory.resolve_profile(EXTRACT_ROUTE)
    logger.debug("extractor uses profile {} ({})", name, profile.model)
    return ReportExtractor(provider=factory.create_chat_provider(profile.model or ""), profile=profile)


@dataclass
class Runtime:
    """Long-lived objects of the ``serve`` process."""

    config: "Config"
    slack: SlackClient
    notion: NotionClient
    aggregation: AggregationPipeline
    reports: ReportPipeline
    router: SlackEventRouter

    async def aclose(self) -> None:
        await self.slack.aclose()
        await self.notion.aclose()


def build_runtime(config: "Config", *, environ: Mapping[str, str] | None = None) -> Runtime:
    require_credentials(config, "serve")
    env = os.environ if environ is None else environ

    slack = build_slack_client(config)
    notion = build_notion_client(config)
    aggregation = AggregationPipeline(
        chat=slack,
        summarizer=build_summarizer(config),
        store=notion,
        digest=config.digest,
    )
    reports = ReportPipeline(
        chat=slack,
        extractor=build_extractor(config),
        store=notion,
        reports=config.reports,
        environ=env,
    )
    router = SlackEventRouter(aggregation=aggregation, reports=reports)
    if config.reports.enabled and config.reports.channels:
        logger.info(f"report detection enabled for {len(config.reports.channels)} channel(s)")
    return Runtime(
        config=config,
        slack=slack,
        notion=notion,
        aggregation=aggregation,
        reports=reports,
        router=router,
    )


@dataclass
class BatchRuntime:
    """Clients and pipelines of one ``backfill`` invocation."""

    slack: SlackClient
    notion: NotionClient
    reports: ReportPipeline
    backfill: BackfillPipeline

    async def aclose(self) -> None:
        await self.slack.aclose()
        await self.notion.aclose()


def build_backfill(config: "Config", *, environ: Mapping[str, str] | None = None) -> BatchRuntime:
    require_credentials(config, "backfill")
    env = os.environ if environ is None else environ

    slack = build_slack_client(config, history=True)
    notion = build_notion_client(config)
    reports = ReportPipeline(
        chat=slack,
        extractor=build_extractor(config),
        store=notion,
        reports=config.reports,
        environ=env,
    )
    backfill = BackfillPipeline(chat=slack, store=notion, reports=reports, pacing=config.pacing)
    return BatchRuntime(slack=slack, notion=notion, reports=reports, backfill=backfill)
