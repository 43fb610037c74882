"""Sequencing of the multi-step generation pipeline for one novel.

The orchestrator owns the :class:`NarrativeState` of a project.  Every public
operation follows the same shape:

1. validate preconditions (raising before any network call);
2. build the prompt variables from the inputs, the live state and, for
   chapters, the archived context;
3. invoke the client;
4. extract what is needed from the response and commit a modified *copy* of
   the state.

Nothing is written before the response has been parsed, so a failed call or
an unreadable response leaves the state exactly as it was.  Operations are
serialised with a re-entrant lock because the Flask layer may call in from
several request threads.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..system_prompts import PLOT_STRUCTURES, STEP_USER_PROMPTS, THEME_LIBRARY_CONTENT
from .archive import ResolvedContext, StateArchiveEntry, initial_entry
from .errors import ConfigurationError, ExtractionError, ValidationError
from .extraction import (
    BasicSettings,
    ChapterBlueprint,
    TwistThresholds,
    DEFAULT_TWIST_THRESHOLDS,
    chapter_blueprint_section,
    clean_ai_response,
    extract_chapter_blueprint,
    extract_proposal,
    extract_state_update,
    next_chapter_purpose,
    parse_basic_settings,
    parse_theme_matches,
    sanitize_title,
    split_dna_sections,
    strip_chapter_title,
)
from .invocation import InvocationClient
from .prompts import PromptRegistry, format_prompt
from .providers import ProviderConfig, is_empty_result
from .state import Chapter, NarrativeState, StoryInputs

LOGGER = logging.getLogger(__name__)

STEP_FIELDS: Dict[str, str] = {
    "dna": "core_dna",
    "characters": "character_dynamics",
    "world": "world_building",
    "plot": "plot_architecture",
    "blueprint": "chapter_blueprint",
    "state": "current_character_state",
}

STEP_PROMPT_KEYS: Dict[str, str] = {
    "dna": "DNA",
    "characters": "CHARACTERS",
    "world": "WORLD",
    "plot": "PLOT",
    "blueprint": "BLUEPRINT",
    "state": "STATE_INIT",
}

PREVIOUS_EXCERPT_CHARS = 800
SYNC_CHAPTER_CHARS = 1000
NO_PREVIOUS_TEXT = "无前文"
DEFAULT_NEXT_PURPOSE = "承接剧情"
NO_THEME_SELECTED = "未指定特定题材公式，请自行发挥"
MISSING = "暂无"

ChangeCallback = Callable[["GenerationOrchestrator"], None]


@dataclass
class StepResult:
    step_id: str
    text: str
    # Parsed only for the DNA step.
    settings: Optional[BasicSettings] = None


@dataclass
class ChapterParams:
    title: str
    role: str = ""
    purpose: str = ""
    suspense_level: str = ""
    foreshadowing: str = ""
    twist_level: str = ""
    short_summary: str = ""

    @classmethod
    def from_blueprint(cls, number: int, blueprint: Optional[ChapterBlueprint]) -> "ChapterParams":
        if blueprint is None:
            return cls(title=f"第{number}章")
        return cls(
            title=blueprint.title or f"第{number}章",
            role=blueprint.role,
            purpose=blueprint.purpose,
            suspense_level=blueprint.suspense_level,
            foreshadowing=blueprint.foreshadowing,
            twist_level=blueprint.twist_level,
            short_summary=blueprint.short_summary,
        )

    @classmethod
    def from_mapping(cls, number: int, data: Mapping[str, Any], base: "ChapterParams") -> "ChapterParams":
        """Overlay the camelCase or snake_case keys present in ``data`` on ``base``."""

        aliases = {
            "title": ("title",),
            "role": ("role",),
            "purpose": ("purpose",),
            "suspense_level": ("suspense", "suspense_level", "suspenseLevel"),
            "foreshadowing": ("foreshadowing",),
            "twist_level": ("twist", "twist_level", "twistLevel"),
            "short_summary": ("summary", "short_summary", "shortSummary"),
        }
        updates: Dict[str, str] = {}
        for attr, keys in aliases.items():
            for key in keys:
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    updates[attr] = value.strip()
                    break
        params = replace(base, **updates)
        if not params.title:
            params.title = f"第{number}章"
        return params


@dataclass
class SyncResult:
    chapter_number: int
    updated_sections: List[str]
    entry: StateArchiveEntry


@dataclass
class PromptPreview:
    key: str
    system_prompt: str
    user_prompt: str


@dataclass
class _Snapshot:
    """Mutable bits that are not part of the narrative itself."""

    step_custom_instructions: Dict[str, str] = field(default_factory=dict)
    judge_result: Optional[str] = None


class GenerationOrchestrator:
    def __init__(
        self,
        client: InvocationClient,
        registry: Optional[PromptRegistry] = None,
        state: Optional[NarrativeState] = None,
        inputs: Optional[StoryInputs] = None,
        *,
        provider: Optional[ProviderConfig] = None,
        on_change: Optional[ChangeCallback] = None,
        plot_structure: Optional[str] = None,
        step_custom_instructions: Optional[Dict[str, str]] = None,
        twist_thresholds: TwistThresholds = DEFAULT_TWIST_THRESHOLDS,
    ) -> None:
        self.client = client
        self.registry = registry or PromptRegistry()
        self.provider = provider
        self.plot_structure = plot_structure or PLOT_STRUCTURES[0]["name"]
        self.twist_thresholds = twist_thresholds
        self._state = state or NarrativeState()
        self._inputs = inputs or StoryInputs()
        self._extra = _Snapshot(step_custom_instructions=dict(step_custom_instructions or {}))
        self._on_change = on_change
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------
    @property
    def state(self) -> NarrativeState:
        with self._lock:
            return self._state.copy()

    @property
    def inputs(self) -> StoryInputs:
        with self._lock:
            return replace(self._inputs)

    @property
    def step_custom_instructions(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._extra.step_custom_instructions)

    @property
    def judge_result(self) -> Optional[str]:
        return self._extra.judge_result

    def load(
        self,
        state: NarrativeState,
        inputs: StoryInputs,
        step_custom_instructions: Optional[Dict[str, str]] = None,
    ) -> None:
        """Replace the whole project, e.g. after an import."""

        with self._lock:
            self._state = state.copy()
            self._inputs = replace(inputs)
            self._extra = _Snapshot(step_custom_instructions=dict(step_custom_instructions or {}))
            self._changed()

    def reset(self) -> None:
        """Start the project over.

        Inputs, generated text, the archive, step instructions and the last
        critique are cleared. Prompt overrides and the plot structure are kept.
        """

        with self._lock:
            self._state = NarrativeState()
            self._inputs = StoryInputs()
            self._extra = _Snapshot()
            LOGGER.info("Project reset.")
            self._changed()

    def update_inputs(self, **updates: Any) -> StoryInputs:
        with self._lock:
            self._inputs = self._inputs.merged(updates)
            self._changed()
            return replace(self._inputs)

    def chapter_params(self, chapter_number: int) -> ChapterParams:
        """Parameters for drafting a chapter, read from the blueprint."""

        with self._lock:
            blueprint = extract_chapter_blueprint(
                self._state.chapter_blueprint,
                chapter_number,
                thresholds=self.twist_thresholds,
            )
            return ChapterParams.from_blueprint(chapter_number, blueprint)

    def resolve_context(self, chapter_number: int) -> ResolvedContext:
        with self._lock:
            return self._state.state_history.resolve_context(chapter_number, self._state)

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------
    def generate_step(
        self,
        step_id: str,
        custom_instruction: str = "",
        *,
        provider: Optional[ProviderConfig] = None,
    ) -> StepResult:
        return self._generate_step(step_id, custom_instruction, provider=provider, remember=True)

    def _generate_step(
        self,
        step_id: str,
        custom_instruction: str,
        *,
        provider: Optional[ProviderConfig],
        remember: bool,
    ) -> StepResult:
        if step_id not in STEP_FIELDS:
            raise ValidationError(f"Unknown generation step '{step_id}'.")

        with self._lock:
            config = self._provider(provider)
            instruction = (custom_instruction or "").strip()
            system_prompt = self.registry.render(
                STEP_PROMPT_KEYS[step_id], self._step_variables(instruction)
            )
            LOGGER.info("Generating step '%s' for '%s'.", step_id, self._inputs.novel_title or "untitled")
            text = self._invoke(config, system_prompt, STEP_USER_PROMPTS["default"])

            settings: Optional[BasicSettings] = None
            if step_id == "dna":
                sections = split_dna_sections(text)
                text = sections.text
                settings = parse_basic_settings(sections.basic_settings)

            new_state = self._state.copy()
            setattr(new_state, STEP_FIELDS[step_id], text)
            if step_id == "state":
                new_state.state_history.reset(initial_entry(new_state.core_dna, text))

            self._commit(new_state)
            if remember:
                if instruction:
                    self._extra.step_custom_instructions[step_id] = instruction
                else:
                    self._extra.step_custom_instructions.pop(step_id, None)
            self._changed()
            return StepResult(step_id=step_id, text=text, settings=settings)

    def generate_chapter(
        self,
        chapter_number: int,
        params: Optional[Mapping[str, Any]] = None,
        theme: Optional[Mapping[str, Any]] = None,
        *,
        provider: Optional[ProviderConfig] = None,
    ) -> Chapter:
        """Draft chapter ``chapter_number`` and store it in its slot."""

        self._check_chapter_number(chapter_number)
        with self._lock:
            config = self._provider(provider)
            chapter_params = self._resolved_params(chapter_number, params)
            key = "CHAPTER_1" if chapter_number == 1 else "CHAPTER_NEXT"
            variables = self._chapter_variables(chapter_number, chapter_params, theme)
            system_prompt = self.registry.render(key, variables)
            user_prompt = format_prompt(STEP_USER_PROMPTS["chapter"], {"novel_number": chapter_number})

            LOGGER.info("Drafting chapter %s ('%s').", chapter_number, chapter_params.title)
            text = self._invoke(
                config,
                system_prompt,
                user_prompt,
                word_count=self._inputs.word_count,
            )
            content = strip_chapter_title(text)

            existing = self._state.chapter(chapter_number)
            chapter = Chapter(
                title=chapter_params.title,
                content=content,
                role=chapter_params.role,
                purpose=chapter_params.purpose,
                suspense_level=chapter_params.suspense_level,
                foreshadowing=chapter_params.foreshadowing,
                twist_level=chapter_params.twist_level,
                short_summary=chapter_params.short_summary,
                chapter_summary=existing.chapter_summary if existing else None,
            )
            self._commit(self._state.with_chapter(chapter_number, chapter))
            self._changed()
            return chapter

    def sync_context(
        self,
        chapter_number: int,
        *,
        provider: Optional[ProviderConfig] = None,
    ) -> SyncResult:
        """Fold chapter ``chapter_number`` back into the live state and archive it."""

        self._check_chapter_number(chapter_number)
        with self._lock:
            chapter = self._state.chapter(chapter_number)
            if chapter is None or not chapter.content.strip():
                raise ValidationError(f"Chapter {chapter_number} has no content to synchronise.")
            config = self._provider(provider)

            content = chapter.content
            if len(content) > SYNC_CHAPTER_CHARS:
                content = f"...{content[-SYNC_CHAPTER_CHARS:]}"

            if self._state.chapter_blueprint:
                section = chapter_blueprint_section(self._state.chapter_blueprint, chapter_number)
                blueprint_text = section or "暂无当前章节蓝图"
            else:
                blueprint_text = "暂无章节蓝图"

            system_prompt = self.registry.render(
                "STATE_UPDATE",
                {
                    "chapter_text": content,
                    "global_summary": self._state.global_summary or self._state.core_dna or "暂无全局摘要",
                    "character_state": self._state.current_character_state or "暂无角色状态",
                    "chapter_blueprint": blueprint_text,
                    "novel_number": chapter_number,
                    "chapter_title": chapter.title or f"第{chapter_number}章",
                },
            )
            text = self._invoke(config, system_prompt, STEP_USER_PROMPTS["state_update"])
            update = extract_state_update(text)

            new_state = self._state.copy()
            previous = new_state.state_history.get(chapter_number)
            if update.global_summary:
                new_state.global_summary = update.global_summary
            if update.character_state:
                new_state.current_character_state = update.character_state
            stored = new_state.chapter(chapter_number)
            if update.chapter_summary and stored is not None:
                stored.chapter_summary = update.chapter_summary

            entry = StateArchiveEntry(
                chapter_num=chapter_number,
                title=f"第{chapter_number}章存档",
                global_summary=update.global_summary
                or (previous.global_summary if previous else "")
                or self._state.global_summary
                or MISSING,
                character_state=update.character_state
                or (previous.character_state if previous else "")
                or self._state.current_character_state
                or MISSING,
                chapter_summary=update.chapter_summary
                or (previous.chapter_summary if previous else "")
                or (chapter.chapter_summary or "")
                or MISSING,
            )
            new_state.state_history.upsert(entry)

            self._commit(new_state)
            self._changed()
            updated = update.updated_sections()
            LOGGER.info("Synchronised chapter %s; updated %s.", chapter_number, ", ".join(updated))
            return SyncResult(chapter_number=chapter_number, updated_sections=updated, entry=entry)

    # ------------------------------------------------------------------
    # Judge
    # ------------------------------------------------------------------
    def judge(self, *, provider: Optional[ProviderConfig] = None) -> str:
        with self._lock:
            inputs = self._inputs
            if not inputs.topic.strip() or not inputs.genre.strip():
                raise ValidationError("Fill in the topic and the genre before asking for a critique.")
            config = self._provider(provider)

            lines = [
                f"题材：{inputs.genre}",
                f"核心脑洞：{inputs.topic}",
                f"小说名称：{inputs.novel_title or '未命名'}",
                f"故事基调：{inputs.tone or '未指定'}",
                f"结局倾向：{inputs.ending or '未指定'}",
                f"叙事视角：{inputs.perspective or '未指定'}",
                f"预计章节数：{inputs.number_of_chapters or 10}章",
                f"每章字数：{inputs.word_count or 2000}字",
                f"自定义特殊要求：{inputs.custom_requirements or '无'}",
            ]
            user_prompt = "\n".join(lines) + "\n"
            if self._state.core_dna:
                user_prompt += f"\n当前核心DNA：\n{self._state.core_dna}"

            result = self._invoke(config, self.registry.get("JUDGE"), user_prompt)
            self._extra.judge_result = result
            return result

    def select_judge_proposal(
        self,
        index: int,
        judge_result: Optional[str] = None,
        *,
        provider: Optional[ProviderConfig] = None,
    ) -> StepResult:
        """Regenerate the DNA following proposal ``index`` of a critique."""

        if index < 1:
            raise ValidationError("Proposal numbers start at 1.")
        with self._lock:
            source = judge_result if judge_result is not None else self._extra.judge_result
            if not source:
                raise ValidationError("There is no critique to pick a proposal from.")
            proposal = extract_proposal(source, index)
            instruction = (
                f"严格根据判官评审方案{index}重写核心DNA，只生成该方案的内容，不要生成其他方案或方向：{proposal}"
            )
            # Proposal instructions are never saved as the DNA step instruction.
            return self._generate_step("dna", instruction, provider=provider, remember=False)

    # ------------------------------------------------------------------
    # One-shot helpers
    # ------------------------------------------------------------------
    def generate_title(self, *, provider: Optional[ProviderConfig] = None) -> str:
        with self._lock:
            inputs = self._inputs
            if not inputs.topic.strip() or not inputs.genre.strip():
                raise ValidationError("Fill in the topic and the genre before generating a title.")
            config = self._provider(provider)
            user_prompt = (
                "根据以下信息生成一个小说名称（只返回书名）：\n"
                f"核心创意：{inputs.topic}\n题材：{inputs.genre}\n基调：{inputs.tone or '未指定'}"
            )
            title = sanitize_title(self._invoke(config, self.registry.get("TITLE"), user_prompt))
            if not title:
                raise ValidationError("The model did not return a usable title.")
            self._inputs = self._inputs.merged({"novel_title": title})
            self._changed()
            return title

    def demon_critique(self, chapter_number: int, *, provider: Optional[ProviderConfig] = None) -> str:
        with self._lock:
            chapter = self._require_content(chapter_number)
            config = self._provider(provider)
            user_prompt = (
                f"请对以下章节进行魔鬼编辑点评：\n\n{chapter.content}\n\n"
                f"【重要资源：独家题材公式库】\n{THEME_LIBRARY_CONTENT}"
            )
            return self._invoke(config, self.registry.get("DEMON_EDITOR"), user_prompt)

    def apply_demon_rewrite(
        self,
        chapter_number: int,
        option: str,
        critique: str,
        *,
        provider: Optional[ProviderConfig] = None,
    ) -> Chapter:
        if not (option or "").strip() or not (critique or "").strip():
            raise ValidationError("Pick a rewrite option from an existing critique.")
        with self._lock:
            chapter = self._require_content(chapter_number)
            config = self._provider(provider)
            prompt = self.registry.render(
                "DEMON_REWRITE_SPECIFIC",
                {
                    "selected_option": option,
                    "original_content": chapter.content,
                    "critique_content": critique,
                    "chapter_title": chapter.title or f"第{chapter_number}章",
                    "THEME_LIBRARY": THEME_LIBRARY_CONTENT,
                },
            )
            return self._rewrite_from(chapter_number, config, "", prompt)

    def feedback_rewrite(
        self,
        chapter_number: int,
        feedback: str,
        *,
        provider: Optional[ProviderConfig] = None,
    ) -> Chapter:
        if not (feedback or "").strip():
            raise ValidationError("Describe what should change before rewriting.")
        with self._lock:
            chapter = self._state.chapter(chapter_number)
            if chapter is None:
                raise ValidationError(f"Chapter {chapter_number} has not been drafted yet.")
            config = self._provider(provider)
            prompt = self.registry.render(
                "USER_FEEDBACK_REWRITE",
                {
                    "chapter_title": chapter.title or f"第{chapter_number}章",
                    "chapter_purpose": chapter.purpose or "未设定",
                    "suspense_level": chapter.suspense_level,
                    "user_feedback": feedback.strip(),
                },
            )
            full_prompt = f"{prompt}\n\n【当前章节草稿】\n{chapter.content or '(无内容)'}"
            return self._rewrite_from(chapter_number, config, "", full_prompt)

    def humanize_rewrite(
        self,
        chapter_number: int,
        sample: str = "",
        *,
        provider: Optional[ProviderConfig] = None,
    ) -> Chapter:
        with self._lock:
            chapter = self._require_content(chapter_number)
            config = self._provider(provider)
            user_prompt = (
                "请根据以下要求改写提供的文本：\n\n"
                "### 要求：\n"
                "1. 保持原文的核心内容和意思不变\n"
                "2. 仔细分析并模仿范文的写作风格、语气、句式和用词特点\n"
                "3. 将原文改写成与范文风格一致的自然流畅的中文表达\n"
                "4. 保持适当的段落结构\n\n"
                f"### 范文：\n{(sample or '').strip() or '无范文，仅需提升文字的自然度和流畅度'}\n\n"
                f"### 原文：\n{chapter.content}\n\n"
                "### 改写后的文本："
            )
            return self._rewrite_from(chapter_number, config, self.registry.get("HUMANIZE"), user_prompt)

    def match_themes(self, chapter_number: int, *, provider: Optional[ProviderConfig] = None) -> List[Dict[str, Any]]:
        """Suggested theme formulas for a chapter; empty when the reply is unreadable."""

        with self._lock:
            params = self._resolved_params(chapter_number, None)
            config = self._provider(provider)
            system_prompt = self.registry.render(
                "THEME_MATCH",
                {
                    "THEME_LIBRARY_CONTENT": THEME_LIBRARY_CONTENT,
                    "chapterTitle": params.title,
                    "chapterSummary": params.short_summary or "暂无摘要",
                    "chapterPurpose": params.purpose or "推进剧情",
                },
            )
            text = self._invoke(config, system_prompt, STEP_USER_PROMPTS["theme_match"])
            themes = parse_theme_matches(text)
            if not themes:
                LOGGER.warning("Theme match for chapter %s returned no readable JSON.", chapter_number)
            return themes

    # ------------------------------------------------------------------
    # Manual edits
    # ------------------------------------------------------------------
    def rewrite_chapter(self, chapter_number: int, content: str) -> Chapter:
        """Replace a drafted chapter's text, keeping every other field."""

        with self._lock:
            chapter = self._state.chapter(chapter_number)
            if chapter is None:
                raise ValidationError(f"Chapter {chapter_number} has not been drafted yet.")
            updated = replace(chapter, content=content or "")
            self._commit(self._state.with_chapter(chapter_number, updated))
            self._changed()
            return updated

    def update_chapter_title(self, chapter_number: int, title: str) -> Chapter:
        with self._lock:
            chapter = self._state.chapter(chapter_number)
            if chapter is None:
                raise ValidationError(f"Chapter {chapter_number} has not been drafted yet.")
            updated = replace(chapter, title=(title or "").strip() or f"第{chapter_number}章")
            self._commit(self._state.with_chapter(chapter_number, updated))
            self._changed()
            return updated

    def set_step_text(self, step_id: str, text: str) -> None:
        """Store hand-edited text for a pipeline step."""

        if step_id not in STEP_FIELDS:
            raise ValidationError(f"Unknown generation step '{step_id}'.")
        with self._lock:
            new_state = self._state.copy()
            setattr(new_state, STEP_FIELDS[step_id], text or "")
            self._commit(new_state)
            self._changed()

    # ------------------------------------------------------------------
    # Prompt preview
    # ------------------------------------------------------------------
    def build_prompt(self, key: str, chapter_number: Optional[int] = None) -> PromptPreview:
        """Fully rendered prompt pair for ``key`` without calling the provider."""

        with self._lock:
            step_for_key = {value: step for step, value in STEP_PROMPT_KEYS.items()}
            if key in step_for_key:
                step_id = step_for_key[key]
                instruction = self._extra.step_custom_instructions.get(step_id, "")
                return PromptPreview(
                    key=key,
                    system_prompt=self.registry.render(key, self._step_variables(instruction)),
                    user_prompt=STEP_USER_PROMPTS["default"],
                )
            if key in ("CHAPTER_1", "CHAPTER_NEXT"):
                number = chapter_number or (1 if key == "CHAPTER_1" else 2)
                params = self._resolved_params(number, None)
                return PromptPreview(
                    key=key,
                    system_prompt=self.registry.render(key, self._chapter_variables(number, params, None)),
                    user_prompt=format_prompt(STEP_USER_PROMPTS["chapter"], {"novel_number": number}),
                )
            return PromptPreview(key=key, system_prompt=self.registry.get(key), user_prompt="")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _provider(self, provider: Optional[ProviderConfig]) -> ProviderConfig:
        config = provider or self.provider
        if config is None:
            raise ConfigurationError("No model provider is configured for this project.")
        return config

    def _invoke(
        self,
        config: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
        *,
        word_count: Optional[int] = None,
    ) -> str:
        text = self.client.generate(config, system_prompt, user_prompt, word_count=word_count)
        if is_empty_result(text):
            raise ExtractionError("The model returned no content; nothing was changed.")
        return text

    def _commit(self, new_state: NarrativeState) -> None:
        self._state = new_state

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:  # pragma: no cover
            LOGGER.exception("Persisting the project after a change failed.")

    def _check_chapter_number(self, chapter_number: int) -> None:
        if chapter_number < 1:
            raise ValidationError("Chapter numbers start at 1.")

    def _require_content(self, chapter_number: int) -> Chapter:
        chapter = self._state.chapter(chapter_number)
        if chapter is None or not chapter.content.strip():
            raise ValidationError(f"Chapter {chapter_number} has no content yet.")
        return chapter

    def _rewrite_from(
        self,
        chapter_number: int,
        config: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
    ) -> Chapter:
        raw = self._invoke(config, system_prompt, user_prompt)
        content = strip_chapter_title(clean_ai_response(raw))
        if not content:
            raise ValidationError("The rewrite came back empty; the chapter was left unchanged.")
        return self.rewrite_chapter(chapter_number, content)

    def _resolved_params(self, chapter_number: int, params: Optional[Mapping[str, Any]]) -> ChapterParams:
        base = self.chapter_params(chapter_number)
        if not params:
            return base
        return ChapterParams.from_mapping(chapter_number, params, base)

    def _step_variables(self, custom_instruction: str) -> Dict[str, Any]:
        inputs = self._inputs
        state = self._state
        return {
            "novel_title": inputs.novel_title or "未命名",
            "topic": inputs.topic,
            "genre": inputs.genre,
            "tone": inputs.tone or "未指定",
            "ending": inputs.ending or "未指定",
            "perspective": inputs.perspective or "未指定",
            "number_of_chapters": inputs.number_of_chapters or 10,
            "word_count": inputs.word_count or 2000,
            "custom_requirements": inputs.custom_requirements or "无",
            "custom_instruction": custom_instruction or "无",
            "STORY_DNA": state.core_dna or "暂无核心DNA",
            "character_dynamics": state.character_dynamics or "暂无角色设定",
            "world_building": state.world_building or "暂无世界观设定",
            "plot_architecture": state.plot_architecture or "暂无情节架构",
            "plot_structure": self.plot_structure,
            "user_guidance": inputs.custom_requirements or "无",
        }

    def _chapter_variables(
        self,
        chapter_number: int,
        params: ChapterParams,
        theme: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        inputs = self._inputs
        state = self._state
        context = state.state_history.resolve_context(chapter_number, state)

        previous = state.chapter(chapter_number - 1) if chapter_number > 1 else None
        if previous is not None and previous.content:
            excerpt = previous.content[-PREVIOUS_EXCERPT_CHARS:]
        else:
            excerpt = NO_PREVIOUS_TEXT

        next_purpose = next_chapter_purpose(state.chapter_blueprint, chapter_number) or DEFAULT_NEXT_PURPOSE
        next_blueprint = extract_chapter_blueprint(state.chapter_blueprint, chapter_number + 1)
        next_title = (next_blueprint.title if next_blueprint else None) or f"第{chapter_number + 1}章"

        if theme and theme.get("name"):
            theme_info = f"已选题材公式：{theme.get('name')} - {theme.get('desc', '')}".rstrip(" -")
        else:
            theme_info = NO_THEME_SELECTED

        return {
            "novel_number": chapter_number,
            "chapter_title": params.title,
            "chapter_role": params.role or "常规章节",
            "chapter_purpose": params.purpose or "推进剧情",
            "suspense_level": params.suspense_level or "正常",
            "foreshadowing": params.foreshadowing or "无",
            "plot_twist_level": params.twist_level or "低",
            "short_summary": params.short_summary or "暂无",
            "selected_theme_info": theme_info,
            "character_state": context.character_state,
            "world_building": state.world_building or "暂无世界观设定",
            "plot_architecture": state.plot_architecture or "暂无情节架构",
            "custom_requirements": inputs.custom_requirements or "无",
            "novel_title": inputs.novel_title or "未命名",
            "tone": inputs.tone or "未指定",
            "perspective": inputs.perspective or "未指定",
            "word_count": inputs.word_count or 2000,
            "CHAPTER_BLUEPRINT": state.chapter_blueprint or "暂无章节蓝图",
            "global_summary": context.global_summary,
            "previous_chapter_excerpt": excerpt,
            "chapter_summary": context.chapter_summary,
            "next_chapter_number": chapter_number + 1,
            "next_chapter_title": next_title,
            "next_chapter_purpose": next_purpose,
        }


__all__ = [
    "ChapterParams",
    "GenerationOrchestrator",
    "PromptPreview",
    "STEP_FIELDS",
    "STEP_PROMPT_KEYS",
    "StepResult",
    "SyncResult",
]
