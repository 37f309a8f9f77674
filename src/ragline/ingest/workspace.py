"""Workspace page (block tree) to plain text.

A page is a list of typed blocks; blocks with ``has_children`` are expanded
through the client, children indented two spaces per level.
"""

from __future__ import annotations

from typing import Any, Protocol


class WorkspaceClient(Protocol):
    """Collaborator that lists the child blocks of a page or block."""

    def list_children(self, block_id: str) -> list[dict[str, Any]]: ...


_PREFIXES: dict[str, str] = {
    "paragraph": "",
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "1. ",
    "toggle": "> ",
    "quote": "> ",
    "callout": "> ",
}


def rich_text_to_plain(rich_text: list[dict[str, Any]] | None) -> str:
    if not rich_text:
        return ""
    return "".join(part.get("plain_text", "") for part in rich_text).strip()


def block_to_text(block: dict[str, Any], depth: int = 0) -> str:
    """Render one block. Unknown block types render as an empty string."""
    indent = "  " * depth
    kind = block.get("type", "")
    body = block.get(kind) or {}

    if kind in _PREFIXES:
        return f"{indent}{_PREFIXES[kind]}{rich_text_to_plain(body.get('rich_text'))}"
    if kind == "to_do":
        mark = "x" if body.get("checked") else " "
        return f"{indent}- [{mark}] {rich_text_to_plain(body.get('rich_text'))}"
    if kind == "code":
        language = body.get("language") or ""
        content = rich_text_to_plain(body.get("rich_text"))
        return f"{indent}```{language}\n{content}\n{indent}```"
    if kind == "table_row":
        cells = body.get("cells") or []
        return indent + " | ".join(rich_text_to_plain(cell) for cell in cells)
    if kind == "child_page":
        return f"{indent}Page: {body.get('title') or 'Untitled'}"
    if kind == "child_database":
        return f"{indent}Database: {body.get('title') or 'Untitled'}"
    if kind == "bookmark":
        return f"{indent}{body.get('url', '')}"
    if kind == "image":
        hosted = body.get(body.get("type", "")) or {}
        return f"{indent}{hosted.get('url', '')}"
    return ""


def blocks_to_lines(
    blocks: list[dict[str, Any]],
    client: WorkspaceClient | None = None,
    depth: int = 0,
) -> list[str]:
    lines: list[str] = []
    for block in blocks:
        text = block_to_text(block, depth)
        if text.strip():
            lines.append(text)
        if block.get("has_children") and client is not None:
            children = client.list_children(block["id"])
            lines.extend(blocks_to_lines(children, client, depth + 1))
    return lines


def page_to_text(page_id: str, client: WorkspaceClient) -> str:
    """Fetch the block tree under *page_id* and render it as text."""
    return "\n".join(blocks_to_lines(client.list_children(page_id), client))
