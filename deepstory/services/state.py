"""In-memory narrative state and its camelCase JSON shape."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .archive import StateArchive, StateArchiveEntry

DEFAULT_NUMBER_OF_CHAPTERS = 12
DEFAULT_WORD_COUNT = 2000


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


@dataclass
class StoryInputs:
    topic: str = ""
    genre: str = ""
    tone: str = ""
    ending: str = ""
    perspective: str = ""
    number_of_chapters: int = DEFAULT_NUMBER_OF_CHAPTERS
    word_count: int = DEFAULT_WORD_COUNT
    custom_requirements: str = ""
    novel_title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "genre": self.genre,
            "tone": self.tone,
            "ending": self.ending,
            "perspective": self.perspective,
            "numberOfChapters": self.number_of_chapters,
            "wordCount": self.word_count,
            "customRequirements": self.custom_requirements,
            "novelTitle": self.novel_title,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "StoryInputs":
        data = data or {}
        return cls(
            topic=_text(data.get("topic")),
            genre=_text(data.get("genre")),
            tone=_text(data.get("tone")),
            ending=_text(data.get("ending")),
            perspective=_text(data.get("perspective")),
            number_of_chapters=_positive_int(data.get("numberOfChapters"), DEFAULT_NUMBER_OF_CHAPTERS),
            word_count=_positive_int(data.get("wordCount"), DEFAULT_WORD_COUNT),
            custom_requirements=_text(data.get("customRequirements")),
            novel_title=_text(data.get("novelTitle")),
        )

    def merged(self, updates: Dict[str, Any]) -> "StoryInputs":
        """Copy with the given snake_case attributes replaced; ``None`` is ignored."""

        known = {key: value for key, value in updates.items() if value is not None and hasattr(self, key)}
        return replace(self, **known)


@dataclass
class Chapter:
    title: str = ""
    content: str = ""
    role: str = ""
    purpose: str = ""
    suspense_level: str = ""
    foreshadowing: str = ""
    twist_level: str = ""
    short_summary: str = ""
    chapter_summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "title": self.title,
            "content": self.content,
            "role": self.role,
            "purpose": self.purpose,
            "suspense": self.suspense_level,
            "foreshadowing": self.foreshadowing,
            "twist": self.twist_level,
            "summary": self.short_summary,
        }
        if self.chapter_summary is not None:
            data["chapterSummary"] = self.chapter_summary
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chapter":
        summary = data.get("chapterSummary")
        return cls(
            title=_text(data.get("title")),
            content=_text(data.get("content")),
            role=_text(data.get("role")),
            purpose=_text(data.get("purpose")),
            suspense_level=_text(data.get("suspense")),
            foreshadowing=_text(data.get("foreshadowing")),
            twist_level=_text(data.get("twist")),
            short_summary=_text(data.get("summary")),
            chapter_summary=None if summary is None else _text(summary),
        )


@dataclass
class NarrativeState:
    """Everything generated so far for one novel.

    ``chapters`` is positional: slot ``i`` holds chapter ``i + 1`` and slots
    for chapters that were never drafted are ``None``.
    """

    core_dna: str = ""
    global_summary: str = ""
    character_dynamics: str = ""
    world_building: str = ""
    plot_architecture: str = ""
    chapter_blueprint: str = ""
    current_character_state: str = ""
    chapters: List[Optional[Chapter]] = field(default_factory=list)
    state_history: StateArchive = field(default_factory=StateArchive)

    def chapter(self, number: int) -> Optional[Chapter]:
        if number < 1 or number > len(self.chapters):
            return None
        return self.chapters[number - 1]

    def with_chapter(self, number: int, chapter: Chapter) -> "NarrativeState":
        """Copy of the state with ``chapter`` stored at position ``number``."""

        if number < 1:
            raise ValueError("Chapter numbers start at 1.")
        chapters = list(self.chapters)
        while len(chapters) < number:
            chapters.append(None)
        chapters[number - 1] = chapter
        return replace(self, chapters=chapters)

    def copy(self) -> "NarrativeState":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dna": self.core_dna,
            "globalSummary": self.global_summary,
            "characters": self.character_dynamics,
            "world": self.world_building,
            "plot": self.plot_architecture,
            "blueprint": self.chapter_blueprint,
            "state": self.current_character_state,
            "chapters": [chapter.to_dict() if chapter else None for chapter in self.chapters],
            "stateHistory": [entry.to_dict() for entry in self.state_history],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NarrativeState":
        data = data or {}
        chapters: List[Optional[Chapter]] = []
        for item in data.get("chapters") or []:
            chapters.append(Chapter.from_dict(item) if isinstance(item, dict) else None)
        history = [
            StateArchiveEntry.from_dict(item)
            for item in data.get("stateHistory") or []
            if isinstance(item, dict)
        ]
        return cls(
            core_dna=_text(data.get("dna")),
            global_summary=_text(data.get("globalSummary")),
            character_dynamics=_text(data.get("characters")),
            world_building=_text(data.get("world")),
            plot_architecture=_text(data.get("plot")),
            chapter_blueprint=_text(data.get("blueprint")),
            current_character_state=_text(data.get("state")),
            chapters=chapters,
            state_history=StateArchive(history),
        )


__all__ = ["Chapter", "NarrativeState", "StoryInputs"]
