"""Prompt template substitution and the step-keyed template registry."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, Mapping, Optional

from ..system_prompts import PROMPTS
from .errors import ValidationError

_PLACEHOLDER_PATTERN = re.compile(r"\{\s*([A-Za-z0-9_]+)\s*\}")


def format_prompt(template: str, values: Mapping[str, Any]) -> str:
    """Replace ``{identifier}`` placeholders in a single pass.

    Unknown identifiers and ``None`` values leave the placeholder untouched
    so a partially filled template stays readable.
    """

    def substitute(match: "re.Match[str]") -> str:
        value = values.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER_PATTERN.sub(substitute, template or "")


def template_placeholders(template: str) -> list[str]:
    """Names referenced by ``template`` in order of first appearance."""

    seen: list[str] = []
    for name in _PLACEHOLDER_PATTERN.findall(template or ""):
        if name not in seen:
            seen.append(name)
    return seen


class PromptRegistry:
    """Built-in templates keyed by step id, with per-project overrides."""

    def __init__(
        self,
        defaults: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._defaults: Dict[str, str] = dict(defaults if defaults is not None else PROMPTS)
        self._overrides: Dict[str, str] = {}
        for key, value in (overrides or {}).items():
            self.set_override(key, value)

    def keys(self) -> Iterable[str]:
        return self._defaults.keys()

    def get(self, key: str) -> str:
        if key in self._overrides:
            return self._overrides[key]
        try:
            return self._defaults[key]
        except KeyError as exc:
            raise ValidationError(f"Unknown prompt template '{key}'.") from exc

    def default(self, key: str) -> str:
        try:
            return self._defaults[key]
        except KeyError as exc:
            raise ValidationError(f"Unknown prompt template '{key}'.") from exc

    def set_override(self, key: str, template: Optional[str]) -> None:
        if key not in self._defaults:
            raise ValidationError(f"Unknown prompt template '{key}'.")
        if template is None or not str(template).strip():
            self._overrides.pop(key, None)
            return
        self._overrides[key] = str(template)

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._overrides.clear()
        else:
            self._overrides.pop(key, None)

    @property
    def overrides(self) -> Dict[str, str]:
        return dict(self._overrides)

    def render(self, key: str, values: Mapping[str, Any]) -> str:
        return format_prompt(self.get(key), values)


__all__ = ["PromptRegistry", "format_prompt", "template_placeholders"]
