"""Inline `<name>value</name>` control tags in model output."""

from __future__ import annotations

import re
from dataclasses import dataclass

TAG_PATTERN = re.compile(r"<([A-Za-z_][\w\-]*)>(.*?)</\1>", re.DOTALL)


@dataclass(frozen=True)
class Tag:
    name: str
    value: str
    start: int
    end: int


def find_tags(text: str) -> list[Tag]:
    """Return the first occurrence of each tag name, in order of appearance."""

    seen: set[str] = set()
    tags: list[Tag] = []
    for match in TAG_PATTERN.finditer(text or ""):
        name = match.group(1)
        if name in seen:
            continue
        seen.add(name)
        tags.append(Tag(name, match.group(2).strip(), match.start(), match.end()))
    return tags


def strip_tags(text: str) -> str:
    """Remove every tag and its value from ``text``."""

    return TAG_PATTERN.sub("", text or "").strip()


__all__ = ["TAG_PATTERN", "Tag", "find_tags", "strip_tags"]
