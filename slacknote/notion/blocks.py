"""Markdown to Notion block conversion (line based, no nesting)."""

from __future__ import annotations

import re
from typing import Any

# Notion rejects rich_text content longer than this.
RICH_TEXT_MAX_CHARS = 2000

_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_NUMBERED = re.compile(r"^\d+\. ")
_BULLET = re.compile(r"^[-*] ")


def rich_text(content: str) -> list[dict[str, Any]]:
    """Plain text with ``[label](url)`` links, split into API-sized segments."""
    segments: list[dict[str, Any]] = []
    pos = 0
    for match in _LINK.finditer(content):
        if match.start() > pos:
            segments.extend(_text_segments(content[pos : match.start()]))
        segments.extend(_text_segments(match.group(1), link=match.group(2)))
        pos = match.end()
    if pos < len(content):
        segments.extend(_text_segments(content[pos:]))
    return segments


def _text_segments(text: str, link: str | None = None) -> list[dict[str, Any]]:
    out = []
    for start in range(0, len(text), RICH_TEXT_MAX_CHARS):
        payload: dict[str, Any] = {"content": text[start : start + RICH_TEXT_MAX_CHARS]}
        if link:
            payload["link"] = {"url": link}
        out.append({"type": "text", "text": payload})
    return out


def _block(block_type: str, content: str) -> dict[str, Any]:
    return {"object": "block", "type": block_type, block_type: {"rich_text": rich_text(content)}}


def markdown_to_blocks(markdown: str) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for line in markdown.split("\n"):
        if not line.strip():
            blocks.append(_block("paragraph", ""))
        elif line.startswith("### "):
            blocks.append(_block("heading_3", line[4:]))
        elif line.startswith("## "):
            blocks.append(_block("heading_2", line[3:]))
        elif line.startswith("# "):
            blocks.append(_block("heading_1", line[2:]))
        elif _BULLET.match(line):
            blocks.append(_block("bulleted_list_item", line[2:]))
        elif _NUMBERED.match(line):
            blocks.append(_block("numbered_list_item", _NUMBERED.sub("", line, count=1)))
        elif line.startswith("> "):
            blocks.append(_block("quote", line[2:]))
        else:
            blocks.append(_block("paragraph", line))
    return blocks


def chunk_blocks(blocks: list[dict[str, Any]], size: int = 100) -> list[list[dict[str, Any]]]:
    """Split *blocks* into request-sized batches (Notion caps children at 100)."""
    return [blocks[i : i + size] for i in range(0, len(blocks), size)]
