"""Notion REST client implementing :class:`DocumentStorePort`."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from slacknote.core.errors import ConfigurationError, NotionAPIError
from slacknote.core.models import ArtifactRef, ReportItem
from slacknote.notion.blocks import chunk_blocks, markdown_to_blocks, rich_text
from slacknote.notion.schema import PropertyRole, SchemaAdapter, equals_filter, property_value


class NotionClient:
    """Pages in the digest database, rows in report-log databases."""

    def __init__(
        self,
        token: str,
        *,
        database_id: str = "",
        title_property: str = "名前",
        api_base: str = "https://api.notion.com/v1",
        api_version: str = "2022-06-28",
        timeout_seconds: float = 30.0,
        max_blocks_per_request: int = 100,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._database_id = database_id
        self._title_property = title_property
        self._api_base = api_base.rstrip("/")
        self._max_blocks = max_blocks_per_request
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Notion-Version": api_version,
            "Content-Type": "application/json",
        }
        self._http = http or httpx.AsyncClient(timeout=timeout_seconds)
        self.schemas = SchemaAdapter(self.describe_target_schema)

    async def __aenter__(self) -> NotionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._api_base}/{path.lstrip('/')}"
        try:
            response = await self._http.request(method, url, headers=self._headers, json=payload)
        except httpx.HTTPError as exc:
            raise NotionAPIError(0, "transport_error", str(exc)) from exc
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise NotionAPIError(
                response.status_code,
                str(body.get("code") or "http_error"),
                str(body.get("message") or response.text[:200]),
            )
        return response.json()

    # ── Digest pages ─────────────────────────────────────────────────

    async def create_document(self, title: str, markdown: str) -> ArtifactRef:
        if not self._database_id:
            raise ConfigurationError("NOTION_DATABASE_ID is not set", missing=["NOTION_DATABASE_ID"])
        batches = chunk_blocks(markdown_to_blocks(markdown), self._max_blocks)
        first = batches[0] if batches else []
        data = await self._request(
            "POST",
            "pages",
            {
                "parent": {"database_id": self._database_id},
                "properties": {self._title_property: {"title": rich_text(title)}},
                "children": first,
            },
        )
        page_id = str(data.get("id") or "")
        for batch in batches[1:]:
            await self._append_blocks(page_id, batch)
        return ArtifactRef(external_id=page_id, url=str(data.get("url") or ""))

    async def append_to_document(self, external_id: str, markdown: str) -> None:
        for batch in chunk_blocks(markdown_to_blocks(markdown), self._max_blocks):
            await self._append_blocks(external_id, batch)

    async def _append_blocks(self, block_id: str, blocks: list[dict[str, Any]]) -> None:
        await self._request("PATCH", f"blocks/{block_id}/children", {"children": blocks})

    # ── Report logs ──────────────────────────────────────────────────

    async def describe_target_schema(self, target: str) -> dict[str, str]:
        data = await self._request("GET", f"databases/{target}")
        properties = data.get("properties") or {}
        return {
            str(name): str(spec.get("type") or "")
            for name, spec in properties.items()
            if isinstance(spec, dict)
        }

    async def check_target_access(self, target: str) -> tuple[bool, str]:
        try:
            schema = await self.schemas.schema_for(target)
        except NotionAPIError as exc:
            return False, str(exc)
        if schema.property_for(PropertyRole.SOURCE_LINK) is None:
            return False, "no property usable as the Slack source link"
        return True, f"ok ({len(schema.properties)} properties)"

    async def query_existing_by_source_url(self, source_url: str, target: str) -> bool:
        schema = await self.schemas.schema_for(target)
        prop = schema.property_for(PropertyRole.SOURCE_LINK)
        if prop is None:
            raise ConfigurationError(f"report-log database {target} has no source-link property")
        data = await self._request(
            "POST",
            f"databases/{target}/query",
            {"filter": equals_filter(prop, source_url), "page_size": 1},
        )
        return bool(data.get("results"))

    async def create_log_entry(self, item: ReportItem, source_url: str, date: str, target: str) -> str:
        schema = await self.schemas.schema_for(target)
        values: dict[PropertyRole, str | None] = {
            PropertyRole.TITLE: item.title,
            PropertyRole.DATE: date,
            PropertyRole.REPORTER: item.reporter,
            PropertyRole.KIND: item.kind.display_name,
            PropertyRole.DETAIL: item.detail,
            PropertyRole.SOURCE_LINK: source_url,
            PropertyRole.ALLERGEN: item.allergen,
            PropertyRole.CUSTOMER: item.customer,
            PropertyRole.PRODUCT: item.product,
        }
        properties: dict[str, Any] = {}
        for role, value in values.items():
            prop = schema.property_for(role)
            if prop is None or not value:
                continue
            payload = property_value(prop.type, value)
            if payload is None:
                logger.debug("skipping {} ({}): unsupported type {}", prop.name, role.value, prop.type)
                continue
            properties.setdefault(prop.name, payload)

        data = await self._request("POST", "pages", {"parent": {"database_id": target}, "properties": properties})
        return str(data.get("id") or "")

    async def query_database(
        self,
        target: str,
        *,
        filter: dict[str, Any] | None = None,
        page_size: int = 100,
    ) -> list[dict[str, Any]]:
        """Every page of *target* matching *filter*, following cursors."""
        pages: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            payload: dict[str, Any] = {"page_size": page_size}
            if filter:
                payload["filter"] = filter
            if cursor:
                payload["start_cursor"] = cursor
            data = await self._request("POST", f"databases/{target}/query", payload)
            pages.extend(data.get("results") or [])
            cursor = data.get("next_cursor") if data.get("has_more") else None
            if not cursor:
                return pages

    async def query_log_pages_since(self, target: str, since: str) -> list[dict[str, Any]]:
        """Report-log rows dated on or after *since* (``YYYY-MM-DD``)."""
        schema = await self.schemas.schema_for(target)
        prop = schema.property_for(PropertyRole.DATE)
        if prop is None:
            raise ConfigurationError(f"report-log database {target} has no date property")
        pages = await self.query_database(
            target, filter={"property": prop.name, "date": {"on_or_after": since}}
        )
        logger.debug("{} log rows in {} since {}", len(pages), target, since)
        return pages

    # ── Bulk import ──────────────────────────────────────────────────

    async def create_database(self, parent_page_id: str, title: str, properties: dict[str, Any]) -> str:
        data = await self._request(
            "POST",
            "databases",
            {
                "parent": {"type": "page_id", "page_id": parent_page_id},
                "title": rich_text(title),
                "properties": properties,
            },
        )
        return str(data.get("id") or "")

    async def create_page(self, database_id: str, properties: dict[str, Any]) -> str:
        data = await self._request("POST", "pages", {"parent": {"database_id": database_id}, "properties": properties})
        return str(data.get("id") or "")
