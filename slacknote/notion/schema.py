"""Role-based property resolution for report-log databases.

The log databases are edited by hand and their column names drift
(``確定者`` vs ``報告者``, ``Slack URL`` vs ``元メッセージ``). Writers address
columns by logical role; each target's schema is fetched once and cached.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger

from slacknote.notion.blocks import rich_text


class PropertyRole(StrEnum):
    TITLE = "title"
    DATE = "date"
    REPORTER = "reporter"
    KIND = "kind"
    DETAIL = "detail"
    SOURCE_LINK = "source_link"
    ALLERGEN = "allergen"
    CUSTOMER = "customer"
    PRODUCT = "product"


ROLE_ALIASES: dict[PropertyRole, tuple[str, ...]] = {
    PropertyRole.TITLE: ("名前", "タイトル", "件名", "Name", "Title"),
    PropertyRole.DATE: ("起票日", "報告日", "日付", "Date"),
    PropertyRole.REPORTER: ("確定者", "報告者", "Reporter"),
    PropertyRole.KIND: ("ミス種別", "種別", "Kind", "Type"),
    PropertyRole.DETAIL: ("詳細", "内容", "Detail", "Details"),
    PropertyRole.SOURCE_LINK: ("Slack URL", "SlackURL", "Slackリンク", "元メッセージ", "Source URL", "Source", "URL"),
    PropertyRole.ALLERGEN: ("アレルゲン", "Allergen"),
    PropertyRole.CUSTOMER: ("顧客名", "顧客", "グループ/店舗名", "Customer"),
    PropertyRole.PRODUCT: ("商品名", "食べ物名", "Product"),
}

# Used when no alias matches: the first property of this type wins.
_TYPE_FALLBACK: dict[PropertyRole, str] = {
    PropertyRole.TITLE: "title",
    PropertyRole.SOURCE_LINK: "url",
    PropertyRole.DATE: "date",
}


@dataclass(frozen=True, slots=True)
class SchemaProperty:
    name: str
    type: str


def _normalize(name: str) -> str:
    return "".join(name.split()).lower()


class TargetSchema:
    """Logical roles resolved against one database's actual properties."""

    def __init__(self, properties: dict[str, str]) -> None:
        self.properties = dict(properties)
        self._roles: dict[PropertyRole, SchemaProperty] = {}
        by_normalized = {_normalize(name): name for name in self.properties}
        for role in PropertyRole:
            name = self._match_alias(role, by_normalized) or self._match_type(role)
            if name is not None:
                self._roles[role] = SchemaProperty(name=name, type=self.properties[name])

    def _match_alias(self, role: PropertyRole, by_normalized: dict[str, str]) -> str | None:
        for alias in ROLE_ALIASES[role]:
            if alias in self.properties:
                return alias
            found = by_normalized.get(_normalize(alias))
            if found is not None:
                return found
        return None

    def _match_type(self, role: PropertyRole) -> str | None:
        wanted = _TYPE_FALLBACK.get(role)
        if wanted is None:
            return None
        for name, prop_type in self.properties.items():
            if prop_type == wanted:
                return name
        return None

    def resolve_property_role(self, role: PropertyRole) -> str | None:
        prop = self._roles.get(role)
        return prop.name if prop else None

    def property_for(self, role: PropertyRole) -> SchemaProperty | None:
        return self._roles.get(role)

    def roles(self) -> dict[str, str]:
        return {role.value: prop.name for role, prop in self._roles.items()}


class SchemaAdapter:
    """Per-target cache of :class:`TargetSchema`."""

    def __init__(self, describe: Callable[[str], Awaitable[dict[str, str]]]) -> None:
        self._describe = describe
        self._cache: dict[str, TargetSchema] = {}

    async def schema_for(self, target: str) -> TargetSchema:
        schema = self._cache.get(target)
        if schema is None:
            schema = TargetSchema(await self._describe(target))
            self._cache[target] = schema
            logger.debug("schema for {} resolved: {}", target, schema.roles())
        return schema

    async def resolve_property_role(self, target: str, role: PropertyRole) -> str | None:
        return (await self.schema_for(target)).resolve_property_role(role)

    def invalidate(self, target: str | None = None) -> None:
        if target is None:
            self._cache.clear()
        else:
            self._cache.pop(target, None)


def property_value(prop_type: str, value: str) -> dict[str, Any] | None:
    """Notion property payload for *value*; ``None`` for unsupported types."""
    if prop_type == "title":
        return {"title": rich_text(value)}
    if prop_type == "rich_text":
        return {"rich_text": rich_text(value)}
    if prop_type == "select":
        # Select option names may not contain commas.
        return {"select": {"name": value.replace(",", "、")[:100]}}
    if prop_type == "multi_select":
        return {"multi_select": [{"name": value.replace(",", "、")[:100]}]}
    if prop_type == "url":
        return {"url": value}
    if prop_type == "date":
        return {"date": {"start": value}}
    return None


def equals_filter(prop: SchemaProperty, value: str) -> dict[str, Any]:
    """Database query filter matching *value* exactly on *prop*."""
    if prop.type in ("url", "rich_text", "title"):
        return {"property": prop.name, prop.type: {"equals": value}}
    raise ValueError(f"property {prop.name!r} of type {prop.type!r} cannot be matched by equality")


def property_text(payload: dict[str, Any] | None) -> str:
    """Plain value of a property as returned on a page; ``""`` when empty."""
    if not payload:
        return ""
    prop_type = payload.get("type")
    value = payload.get(prop_type) if prop_type else None
    if prop_type in ("title", "rich_text"):
        return "".join(
            str(seg.get("plain_text") or (seg.get("text") or {}).get("content") or "") for seg in value or []
        )
    if prop_type == "select":
        return str((value or {}).get("name") or "")
    if prop_type == "multi_select":
        return "、".join(str(opt.get("name") or "") for opt in value or [])
    if prop_type == "date":
        return str((value or {}).get("start") or "")
    if prop_type in ("url", "email", "phone_number"):
        return str(value or "")
    if prop_type == "number":
        return "" if value is None else str(value)
    return ""
