"""Helpers for exporting drafted chapters to plain text."""
from __future__ import annotations

from typing import Iterable, Optional

from .state import Chapter, StoryInputs


def _clean(value: Optional[str]) -> str:
    if not value:
        return ""
    return str(value).strip()


def render_chapters_text(inputs: StoryInputs, chapters: Iterable[Optional[Chapter]]) -> str:
    """The whole manuscript as one string; unwritten slots are skipped."""

    lines: list[str] = [_clean(inputs.novel_title) or "未命名"]

    for number, chapter in enumerate(chapters, start=1):
        if chapter is None:
            continue
        lines.append("")
        lines.append(f"第{number}章 {_clean(chapter.title) or f'第{number}章'}")
        content = _clean(chapter.content)
        lines.extend(["", content or "(暂无正文)"])

    return "\n".join(lines).rstrip() + "\n"


__all__ = ["render_chapters_text"]
