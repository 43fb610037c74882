"""Per-chapter snapshots of the evolving story context.

After chapter *N* is synchronised an entry for *N* is recorded, so drafting
or regenerating chapter *T* later can start from the context as it stood at
the end of chapter *T - 1* instead of whatever the live state has drifted
to since.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

NO_CHARACTER_STATE = "暂无角色状态"
NO_GLOBAL_SUMMARY = "暂无全局摘要"
NO_CHAPTER_SUMMARY = "暂无章节摘要"

INITIAL_ENTRY_TITLE = "初始设定"
INITIAL_CHAPTER_SUMMARY = "无 (初始状态)"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class StateArchiveEntry:
    chapter_num: int
    title: str = ""
    global_summary: str = ""
    character_state: str = ""
    chapter_summary: str = ""
    timestamp: int = field(default_factory=_now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapterNum": self.chapter_num,
            "title": self.title,
            "globalSummary": self.global_summary,
            "characterState": self.character_state,
            "chapterSummary": self.chapter_summary,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateArchiveEntry":
        try:
            chapter_num = int(data.get("chapterNum", 0))
        except (TypeError, ValueError):
            chapter_num = 0
        try:
            timestamp = int(data.get("timestamp") or 0)
        except (TypeError, ValueError):
            timestamp = 0
        return cls(
            chapter_num=chapter_num,
            title=str(data.get("title") or ""),
            global_summary=str(data.get("globalSummary") or ""),
            character_state=str(data.get("characterState") or ""),
            chapter_summary=str(data.get("chapterSummary") or ""),
            timestamp=timestamp or _now_ms(),
        )


@dataclass
class ResolvedContext:
    global_summary: str
    character_state: str
    chapter_summary: str
    # ``None`` when the live state was used.
    source_chapter: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "globalSummary": self.global_summary,
            "characterState": self.character_state,
            "chapterSummary": self.chapter_summary,
            "sourceChapter": self.source_chapter,
        }


class StateArchive:
    """Ordered collection with at most one entry per chapter number."""

    def __init__(self, entries: Optional[List[StateArchiveEntry]] = None) -> None:
        self._entries: List[StateArchiveEntry] = []
        for entry in entries or []:
            self.upsert(entry)

    def __iter__(self) -> Iterator[StateArchiveEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateArchive):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"StateArchive({[entry.chapter_num for entry in self._entries]!r})"

    @property
    def entries(self) -> List[StateArchiveEntry]:
        return list(self._entries)

    def get(self, chapter_num: int) -> Optional[StateArchiveEntry]:
        for entry in self._entries:
            if entry.chapter_num == chapter_num:
                return entry
        return None

    def upsert(self, entry: StateArchiveEntry) -> None:
        self._entries = [item for item in self._entries if item.chapter_num != entry.chapter_num]
        self._entries.append(entry)
        self._entries.sort(key=lambda item: item.chapter_num)

    def reset(self, entry: Optional[StateArchiveEntry] = None) -> None:
        """Discard every entry, optionally seeding the archive with ``entry``."""

        self._entries = [entry] if entry is not None else []

    def latest_before(self, target_chapter: int) -> Optional[StateArchiveEntry]:
        candidates = [entry for entry in self._entries if entry.chapter_num < target_chapter]
        return candidates[-1] if candidates else None

    def is_consistent(self) -> bool:
        numbers = [entry.chapter_num for entry in self._entries]
        return numbers == sorted(set(numbers))

    def resolve_context(self, target_chapter: int, live: Any) -> ResolvedContext:
        """Context to draft ``target_chapter`` from.

        Chapter 1 always reads the live state.  Later chapters read the latest
        entry recorded before them and fall back to the live state when there
        is none.  ``live`` needs ``global_summary``, ``core_dna`` and
        ``current_character_state`` attributes.
        """

        if target_chapter > 1:
            entry = self.latest_before(target_chapter)
            if entry is not None:
                return ResolvedContext(
                    global_summary=entry.global_summary or NO_GLOBAL_SUMMARY,
                    character_state=entry.character_state or NO_CHARACTER_STATE,
                    chapter_summary=entry.chapter_summary or NO_CHAPTER_SUMMARY,
                    source_chapter=entry.chapter_num,
                )
        return live_context(live)


def live_context(live: Any) -> ResolvedContext:
    return ResolvedContext(
        global_summary=(
            getattr(live, "global_summary", "") or getattr(live, "core_dna", "") or NO_GLOBAL_SUMMARY
        ),
        character_state=getattr(live, "current_character_state", "") or NO_CHARACTER_STATE,
        chapter_summary=NO_CHAPTER_SUMMARY,
    )


def initial_entry(core_dna: str, character_state: str) -> StateArchiveEntry:
    """Entry 0 seeded when the initial character state is generated."""

    return StateArchiveEntry(
        chapter_num=0,
        title=INITIAL_ENTRY_TITLE,
        global_summary=core_dna or "暂无",
        character_state=character_state,
        chapter_summary=INITIAL_CHAPTER_SUMMARY,
    )


__all__ = [
    "NO_CHAPTER_SUMMARY",
    "NO_CHARACTER_STATE",
    "NO_GLOBAL_SUMMARY",
    "ResolvedContext",
    "StateArchive",
    "StateArchiveEntry",
    "initial_entry",
    "live_context",
]
