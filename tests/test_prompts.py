import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from deepstory.services.errors import ValidationError
from deepstory.services.prompts import PromptRegistry, format_prompt, template_placeholders
from deepstory.system_prompts import PLOT_STRUCTURES, PROMPTS


def test_format_prompt_leaves_unknown_and_none_placeholders():
    result = format_prompt("A={a} B={b} C={ c }", {"a": 1, "b": None, "c": "三"})
    assert result == "A=1 B={b} C=三"


def test_format_prompt_is_single_pass():
    result = format_prompt("{first}-{second}", {"first": "{second}", "second": "x"})
    assert result == "{second}-x"


def test_template_placeholders_lists_names_once():
    assert template_placeholders("{a} {b} {a} { c }") == ["a", "b", "c"]


def test_registry_overrides_take_precedence_and_can_be_reset():
    registry = PromptRegistry()
    registry.set_override("TITLE", "自定义命名提示")

    assert registry.get("TITLE") == "自定义命名提示"
    assert registry.default("TITLE") == PROMPTS["TITLE"]
    assert registry.overrides == {"TITLE": "自定义命名提示"}

    registry.set_override("TITLE", "   ")
    assert registry.get("TITLE") == PROMPTS["TITLE"]

    registry.set_override("JUDGE", "x")
    registry.reset()
    assert registry.overrides == {}


def test_registry_rejects_unknown_keys():
    registry = PromptRegistry()
    with pytest.raises(ValidationError):
        registry.get("NOPE")
    with pytest.raises(ValidationError):
        registry.set_override("NOPE", "template")


def test_registry_render_uses_override():
    registry = PromptRegistry(overrides={"DNA": "书名：{novel_title}"})
    assert registry.render("DNA", {"novel_title": "测试"}) == "书名：测试"


def test_step_templates_are_all_present():
    for key in (
        "DNA",
        "CHARACTERS",
        "WORLD",
        "PLOT",
        "BLUEPRINT",
        "STATE_INIT",
        "CHAPTER_1",
        "CHAPTER_NEXT",
        "STATE_UPDATE",
        "JUDGE",
        "TITLE",
        "DEMON_EDITOR",
        "DEMON_REWRITE_SPECIFIC",
        "USER_FEEDBACK_REWRITE",
        "HUMANIZE",
        "THEME_MATCH",
    ):
        assert PROMPTS[key].strip()
    assert PLOT_STRUCTURES[0]["name"].startswith("三幕式结构")
