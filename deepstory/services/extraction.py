"""Tolerant parsers that recover structured fields from free-form model output.

Model output only loosely follows the requested format, so every field is
recovered through an ordered list of small, pure strategies (text in,
optional value out).  The first strategy producing a non-empty value wins;
when none does the caller substitutes its own default.  The only hard
failure is :func:`extract_state_update`, which raises
:class:`ExtractionError` when no section at all could be recognised.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import ExtractionError

BASIC_SETTINGS_HEADING = "## 基础设定 (BASIC_SETTINGS)"
CORE_DNA_HEADING = "## 核心DNA (STORY_DNA)"

Strategy = Callable[[str], Optional[str]]

_FENCE_START = re.compile(r"^```[A-Za-z]*\s*")
_FENCE_END = re.compile(r"\s*```\s*$")
_FENCE_ANY = re.compile(r"```[A-Za-z]*\s*")
_BLANK_RUNS = re.compile(r"\n\s*\n")

_BASIC_HEADING_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?\**[ \t]*基础设定[ \t]*(?:[(（][ \t]*BASIC_SETTINGS[ \t]*[)）])?[ \t]*\**[ \t]*[:：]?[ \t]*$",
    re.MULTILINE | re.IGNORECASE,
)
_DNA_HEADING_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?\**[ \t]*核心DNA[ \t]*(?:[(（][ \t]*STORY_DNA[ \t]*[)）])?[ \t]*\**[ \t]*[:：]?[ \t]*$",
    re.MULTILINE | re.IGNORECASE,
)
_EXPLANATION_TAIL_RE = re.compile(r"^[ \t]*(?:#{1,6}[ \t]*)?DNA解析说明[\s\S]*\Z", re.MULTILINE | re.IGNORECASE)
_FOREIGN_HEADING_RE = re.compile(
    r"^##(?!#)(?![ \t]*\**[ \t]*(?:基础设定|核心DNA))[^\n]*(?:\n|\Z)",
    re.MULTILINE | re.IGNORECASE,
)
_BULLET_PREFIXES = ("-", "*", "•", "+")


def strip_code_fences(text: Optional[str]) -> str:
    """Remove Markdown code-fence wrapping and collapse blank-line runs."""

    if not text or not isinstance(text, str):
        return ""
    cleaned = _FENCE_START.sub("", text.strip())
    cleaned = _FENCE_END.sub("", cleaned)
    cleaned = _FENCE_ANY.sub("", cleaned)
    cleaned = _BLANK_RUNS.sub("\n\n", cleaned)
    return cleaned.strip()


# ---------------------------------------------------------------------------
# Basic settings / core DNA
# ---------------------------------------------------------------------------


@dataclass
class DNASections:
    basic_settings: str
    core_dna: str

    @property
    def text(self) -> str:
        parts = [part for part in (self.basic_settings, self.core_dna) if part]
        combined = "\n\n".join(parts) if parts else CORE_DNA_HEADING
        return _BLANK_RUNS.sub("\n\n", combined).strip()


def split_dna_sections(raw: Optional[str]) -> DNASections:
    """Separate the basic-settings and core-DNA blocks of a DNA generation.

    The result is always heading-prefixed.  When the model supplied no
    recognisable heading at all the content is attributed to the core-DNA
    block.
    """

    cleaned = _prepare_dna_text(raw)

    basic = ""
    dna = ""
    for strategy in (_split_by_headings, _split_by_leading_bullets):
        result = strategy(cleaned)
        if result is not None:
            basic, dna = result
            break

    if not basic and not dna:
        dna = cleaned

    basic_block = f"{BASIC_SETTINGS_HEADING}\n{basic}".strip() if basic else ""
    dna_block = f"{CORE_DNA_HEADING}\n{dna}".strip() if (dna or not basic_block) else ""
    return DNASections(
        basic_settings=_BLANK_RUNS.sub("\n\n", basic_block),
        core_dna=_BLANK_RUNS.sub("\n\n", dna_block),
    )


def _prepare_dna_text(raw: Optional[str]) -> str:
    cleaned = strip_code_fences(raw)
    first_heading = _first_heading_position(cleaned)
    if first_heading is not None:
        cleaned = cleaned[first_heading:]
    cleaned = _EXPLANATION_TAIL_RE.sub("", cleaned)
    cleaned = _FOREIGN_HEADING_RE.sub("", cleaned)
    return cleaned.strip()


def _first_heading_position(text: str) -> Optional[int]:
    positions = [m.start() for m in (_BASIC_HEADING_RE.search(text), _DNA_HEADING_RE.search(text)) if m]
    return min(positions) if positions else None


def _split_by_headings(text: str) -> Optional[Tuple[str, str]]:
    basic_match = _BASIC_HEADING_RE.search(text)
    dna_match = _DNA_HEADING_RE.search(text)
    if not basic_match and not dna_match:
        return None

    if basic_match and dna_match:
        if basic_match.start() < dna_match.start():
            basic = text[basic_match.end():dna_match.start()]
            dna = text[dna_match.end():]
        else:
            dna = text[dna_match.end():basic_match.start()]
            basic = text[basic_match.end():]
        return basic.strip(), dna.strip()

    if basic_match:
        bullets, rest = partition_bullet_run(text[basic_match.end():])
        return bullets, rest

    return "", text[dna_match.end():].strip()


def _split_by_leading_bullets(text: str) -> Optional[Tuple[str, str]]:
    bullets, rest = partition_bullet_run(text)
    if not bullets:
        return None
    if not any(label in bullets for label, _ in _BASIC_SETTING_FIELDS):
        return None
    return bullets, rest


def partition_bullet_run(text: str) -> Tuple[str, str]:
    """Split ``text`` at the first non-empty line that is not a bullet."""

    bullet_lines: List[str] = []
    rest_lines: List[str] = []
    in_rest = False
    for line in (text or "").split("\n"):
        stripped = line.strip()
        if in_rest:
            rest_lines.append(line)
        elif not stripped or stripped.startswith(_BULLET_PREFIXES):
            bullet_lines.append(line)
        else:
            in_rest = True
            rest_lines.append(line)
    return "\n".join(bullet_lines).strip(), "\n".join(rest_lines).strip()


@dataclass
class BasicSettings:
    novel_title: Optional[str] = None
    tone: Optional[str] = None
    ending: Optional[str] = None
    perspective: Optional[str] = None
    number_of_chapters: Optional[int] = None
    word_count: Optional[int] = None
    custom_requirements: Optional[str] = None

    def present(self) -> Dict[str, Any]:
        """Only the fields that were found."""

        return {key: value for key, value in self.__dict__.items() if value is not None}


_BASIC_SETTING_FIELDS = (
    ("小说名称", "novel_title"),
    ("故事基调", "tone"),
    ("结局倾向", "ending"),
    ("叙事视角", "perspective"),
    ("预计章节数", "number_of_chapters"),
    ("每章字数", "word_count"),
    ("自定义特殊要求", "custom_requirements"),
)
_NUMERIC_SETTINGS = {"number_of_chapters", "word_count"}
_LEADING_INT = re.compile(r"^\s*(\d+)")


def parse_basic_settings(text: Optional[str]) -> BasicSettings:
    """Read the labelled ``label：value`` lines of a basic-settings block."""

    settings = BasicSettings()
    source = text or ""
    for label, attr in _BASIC_SETTING_FIELDS:
        value = extract_labeled_line(source, label)
        if value is None:
            continue
        if attr in _NUMERIC_SETTINGS:
            match = _LEADING_INT.match(value)
            setattr(settings, attr, int(match.group(1)) if match else None)
        else:
            setattr(settings, attr, value)
    return settings


def extract_labeled_line(text: str, label: str) -> Optional[str]:
    """Value following ``label`` and a separator, up to the end of the line."""

    strategies = (
        _labeled_pattern(rf"[\*_]*{re.escape(label)}[\*_]*[ \t]*[:：][ \t]*([^\n]+)"),
        _labeled_pattern(rf"{re.escape(label)}[ \t]*[-—][ \t]*([^\n]+)"),
    )
    return first_result(strategies, text)


def _labeled_pattern(pattern: str) -> Strategy:
    compiled = re.compile(pattern, re.IGNORECASE)

    def strategy(text: str) -> Optional[str]:
        match = compiled.search(text)
        if not match:
            return None
        return strip_emphasis(match.group(1)) or None

    return strategy


def first_result(strategies: Iterable[Strategy], text: str) -> Optional[str]:
    """Run ``strategies`` in order and return the first non-empty result."""

    for strategy in strategies:
        value = strategy(text)
        if value:
            return value
    return None


def strip_emphasis(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.replace("**", "").replace("*", "").replace("_", "").strip()


# ---------------------------------------------------------------------------
# Chapter blueprint
# ---------------------------------------------------------------------------

TWIST_LOW = "低"
TWIST_MEDIUM = "中"
TWIST_HIGH = "高"
TWIST_VERY_HIGH = "极高"
DEFAULT_SUSPENSE = "正常"


@dataclass(frozen=True)
class TwistThresholds:
    """Minimum star counts for each twist level."""

    medium: int = 3
    high: int = 4
    very_high: int = 5

    def level_for(self, stars: int) -> str:
        if stars >= self.very_high:
            return TWIST_VERY_HIGH
        if stars >= self.high:
            return TWIST_HIGH
        if stars >= self.medium:
            return TWIST_MEDIUM
        return TWIST_LOW


DEFAULT_TWIST_THRESHOLDS = TwistThresholds()


@dataclass
class ChapterBlueprint:
    number: int
    section: str
    title: Optional[str] = None
    role: str = ""
    purpose: str = ""
    suspense_level: str = DEFAULT_SUSPENSE
    foreshadowing: str = ""
    twist_level: str = TWIST_LOW
    short_summary: str = ""


_HEADED_CHAPTER_RE = re.compile(r"^[ \t]*#{1,6}[ \t]*第[ \t]*(\d+)[ \t]*章", re.MULTILINE)
_BARE_CHAPTER_RE = re.compile(r"^[ \t]*\**第[ \t]*(\d+)[ \t]*章", re.MULTILINE)
_STAR_RUN_RE = re.compile(r"★+")
_SUMMARY_LABELS = ("本章简述", "本章简介", "简述", "简介")


def split_blueprint(blueprint: Optional[str]) -> Dict[int, str]:
    """Map chapter number to its blueprint section.

    Sections are delimited by chapter headings rather than matched by one
    greedy expression, so trailing decorations on a heading cannot leak one
    chapter's fields into another.  The first section for a number wins.
    """

    text = (blueprint or "").replace("\r\n", "\n").strip()
    if not text:
        return {}

    for pattern in (_HEADED_CHAPTER_RE, _BARE_CHAPTER_RE):
        matches = list(pattern.finditer(text))
        if not matches:
            continue
        sections: Dict[int, str] = {}
        for index, match in enumerate(matches):
            end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
            number = int(match.group(1))
            sections.setdefault(number, text[match.start():end].strip())
        return sections
    return {}


def chapter_blueprint_section(blueprint: Optional[str], chapter_number: int) -> Optional[str]:
    return split_blueprint(blueprint).get(chapter_number)


def extract_chapter_blueprint(
    blueprint: Optional[str],
    chapter_number: int,
    *,
    thresholds: TwistThresholds = DEFAULT_TWIST_THRESHOLDS,
) -> Optional[ChapterBlueprint]:
    """Structured fields of chapter ``chapter_number``, or ``None`` if absent."""

    section = chapter_blueprint_section(blueprint, chapter_number)
    if section is None:
        return None

    return ChapterBlueprint(
        number=chapter_number,
        section=section,
        title=_extract_blueprint_title(section),
        role=extract_labeled_line(section, "本章定位") or "",
        purpose=extract_labeled_line(section, "核心作用") or "",
        suspense_level=extract_labeled_line(section, "悬念密度") or DEFAULT_SUSPENSE,
        foreshadowing=extract_labeled_line(section, "伏笔操作") or "",
        twist_level=extract_twist_level(section, thresholds=thresholds),
        short_summary=_extract_short_summary(section) or "",
    )


def next_chapter_purpose(blueprint: Optional[str], chapter_number: int) -> Optional[str]:
    """Purpose of the chapter after ``chapter_number``, used to prime continuity."""

    following = extract_chapter_blueprint(blueprint, chapter_number + 1)
    if following is None or not following.purpose:
        return None
    return following.purpose


def extract_twist_level(section: str, *, thresholds: TwistThresholds = DEFAULT_TWIST_THRESHOLDS) -> str:
    line = extract_labeled_line(section, "认知颠覆")
    if not line:
        return TWIST_LOW
    match = _STAR_RUN_RE.search(line)
    stars = len(match.group(0)) if match else 0
    return thresholds.level_for(stars)


def _extract_blueprint_title(section: str) -> Optional[str]:
    strategies = (
        _title_pattern(r"\A[ \t]*#{0,6}[ \t]*\**第[ \t]*\d+[ \t]*章[ \t]*[-—:：][ \t]*([^\n]+)"),
        _title_pattern(r"\A[ \t]*#{0,6}[ \t]*\**第[ \t]*\d+[ \t]*章[ \t]+([^\n]+)"),
        _title_pattern(r"[\*_]*标题[\*_]*[ \t]*[:：][ \t]*([^\n]+)"),
    )
    return first_result(strategies, section)


def _title_pattern(pattern: str) -> Strategy:
    compiled = re.compile(pattern, re.MULTILINE)

    def strategy(text: str) -> Optional[str]:
        match = compiled.search(text)
        if not match:
            return None
        return strip_emphasis(match.group(1)).strip(" -—:：") or None

    return strategy


def _extract_short_summary(section: str) -> Optional[str]:
    labels = "|".join(_SUMMARY_LABELS)
    strategies = (
        _multiline_field(rf"[\*_]*本章简述[\*_]*[ \t]*[:：]([\s\S]*?)(?=\n[ \t]*#{{1,6}}[ \t]|\Z)"),
        _multiline_field(rf"[\*_]*(?:{labels})[\*_]*[ \t]*[:：]([\s\S]*?)(?=\n[ \t]*[\*_]{{2,}}|\n[ \t]*#{{1,6}}[ \t]|\Z)"),
    )
    return first_result(strategies, section)


def _multiline_field(pattern: str) -> Strategy:
    compiled = re.compile(pattern)

    def strategy(text: str) -> Optional[str]:
        match = compiled.search(text)
        if not match:
            return None
        value = strip_emphasis(match.group(1))
        value = _BLANK_RUNS.sub("\n", value)
        return value.strip() or None

    return strategy


# ---------------------------------------------------------------------------
# State update
# ---------------------------------------------------------------------------

GLOBAL_SUMMARY_LABELS = ("全局故事摘要", "GLOBAL_SUMMARY_UPDATED")
CHARACTER_STATE_LABELS = ("角色状态档案", "CHARACTER_STATE_UPDATED")
CHAPTER_SUMMARY_LABELS = ("当前章节摘要", "CURRENT_CHAPTER_SUMMARY")

_STATE_SECTIONS = (
    ("global_summary", GLOBAL_SUMMARY_LABELS),
    ("character_state", CHARACTER_STATE_LABELS),
    ("chapter_summary", CHAPTER_SUMMARY_LABELS),
)
_STATE_LABEL_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?[\*【\[]*[ \t]*(?P<label>"
    + "|".join(re.escape(label) for _, labels in _STATE_SECTIONS for label in labels)
    + r")(?P<rest>[^\n]*)$",
    re.MULTILINE | re.IGNORECASE,
)
_LABEL_TAG_RE = re.compile(r"[(（][ \t]*[A-Za-z_]+[ \t]*[)）]")


@dataclass
class StateUpdate:
    global_summary: Optional[str] = None
    character_state: Optional[str] = None
    chapter_summary: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.global_summary or self.character_state or self.chapter_summary)

    def updated_sections(self) -> List[str]:
        return [name for name, _ in _STATE_SECTIONS if getattr(self, name)]


def parse_state_update(text: Optional[str]) -> StateUpdate:
    """Collect whichever of the three state sections are present."""

    source = strip_code_fences(text)
    label_to_section = {
        label.lower(): name for name, labels in _STATE_SECTIONS for label in labels
    }
    matches = list(_STATE_LABEL_RE.finditer(source))
    update = StateUpdate()
    for index, match in enumerate(matches):
        section = label_to_section[match.group("label").lower()]
        if getattr(update, section):
            continue
        end = matches[index + 1].start() if index + 1 < len(matches) else len(source)
        inline = _LABEL_TAG_RE.sub("", match.group("rest"))
        inline = inline.strip().lstrip(":：*】] \t").strip()
        body = source[match.end():end].strip()
        value = "\n".join(part for part in (inline, body) if part).strip()
        if value:
            setattr(update, section, value)
    return update


def extract_state_update(text: Optional[str]) -> StateUpdate:
    """Like :func:`parse_state_update` but fail when nothing was recognised."""

    update = parse_state_update(text)
    if update.is_empty:
        raise ExtractionError(
            "The model response did not contain a recognisable state update; context sync failed."
        )
    return update


# ---------------------------------------------------------------------------
# Chapter prose
# ---------------------------------------------------------------------------

_CHAPTER_NUMERALS = "0-9一二三四五六七八九十百千零两"
_LEADING_TITLE_RE = re.compile(
    rf"\A\s*(?:#{{1,6}}[ \t]*)?第[ \t]*[{_CHAPTER_NUMERALS}]+[ \t]*章[^\n]*(?:\n|\Z)"
)
_EMBEDDED_TITLE_RE = re.compile(rf"^##[ \t]*第[{_CHAPTER_NUMERALS}]+章", re.MULTILINE)
_TABLE_LOG_RE = re.compile(r"\A(?:[ \t]*\|[^\n]*(?:\n|\Z))+")


def strip_chapter_title(content: Optional[str]) -> str:
    """Drop one leading chapter-heading line; the body is otherwise untouched."""

    text = content or ""
    return _LEADING_TITLE_RE.sub("", text, count=1).strip()


def clean_ai_response(text: Optional[str]) -> str:
    """Cut reasoning noise a model sometimes emits before the chapter prose."""

    source = text or ""
    match = _EMBEDDED_TITLE_RE.search(source)
    if match:
        return source[match.start():]
    if source.strip().startswith("|"):
        return _TABLE_LOG_RE.sub("", source.strip()).strip()
    return source


# ---------------------------------------------------------------------------
# Judge proposals, themes, titles
# ---------------------------------------------------------------------------


def extract_proposal(judge_text: Optional[str], index: int) -> str:
    """Text of proposal ``index`` (1-based); the whole critique if not found."""

    source = judge_text or ""
    strategies = (
        _proposal_pattern(rf"【方案{index}[：:][^】]*】[\s\S]*?(?=【方案{index + 1}[：:]|\Z)"),
        _proposal_pattern(
            rf"^[ \t#\*]*方案{index}[：:][\s\S]*?(?=^[ \t#\*]*方案{index + 1}[：:]|\Z)",
            re.MULTILINE,
        ),
    )
    return first_result(strategies, source) or source


def _proposal_pattern(pattern: str, flags: int = 0) -> Strategy:
    compiled = re.compile(pattern, flags)

    def strategy(text: str) -> Optional[str]:
        match = compiled.search(text)
        return match.group(0).strip() if match else None

    return strategy


def parse_theme_matches(text: Optional[str]) -> List[Dict[str, Any]]:
    """Recover a JSON list of theme matches; an empty list when unreadable."""

    source = (text or "").strip()
    if not source:
        return []

    candidates: List[str] = [source, strip_code_fences(source)]
    start, end = source.find("["), source.rfind("]")
    if start != -1 and end > start:
        candidates.append(source[start:end + 1])
    obj_start, obj_end = source.find("{"), source.rfind("}")
    if obj_start != -1 and obj_end > obj_start:
        candidates.append(source[obj_start:obj_end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            data = [data]
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
    return []


_TITLE_NOISE = str.maketrans("", "", "\"“”'‘’《》「」")
_TITLE_PREFIX_RE = re.compile(r"^(?:书名|小说名称|标题)[ \t]*[:：][ \t]*")


def sanitize_title(text: Optional[str]) -> str:
    """First line of a generated book title without quotes or brackets."""

    for line in (text or "").splitlines():
        candidate = _TITLE_PREFIX_RE.sub("", strip_emphasis(line.strip().lstrip("#").strip()))
        candidate = candidate.translate(_TITLE_NOISE).strip()
        if candidate:
            return candidate
    return ""


__all__ = [
    "BASIC_SETTINGS_HEADING",
    "BasicSettings",
    "CORE_DNA_HEADING",
    "ChapterBlueprint",
    "DNASections",
    "StateUpdate",
    "TwistThresholds",
    "chapter_blueprint_section",
    "clean_ai_response",
    "extract_chapter_blueprint",
    "extract_labeled_line",
    "extract_proposal",
    "extract_state_update",
    "extract_twist_level",
    "first_result",
    "next_chapter_purpose",
    "parse_basic_settings",
    "parse_state_update",
    "parse_theme_matches",
    "partition_bullet_run",
    "sanitize_title",
    "split_blueprint",
    "split_dna_sections",
    "strip_chapter_title",
    "strip_code_fences",
]
