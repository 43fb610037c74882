"""Whole-project JSON snapshots and their key-value persistence."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import current_app

from ..extensions import db
from .errors import ValidationError
from .state import NarrativeState, StoryInputs

SNAPSHOT_VERSION = "1.0.0"


@dataclass
class ProjectSnapshot:
    inputs: StoryInputs
    state: NarrativeState
    step_custom_instructions: Dict[str, str] = field(default_factory=dict)
    export_date: Optional[str] = None


def export_snapshot(
    inputs: StoryInputs,
    state: NarrativeState,
    step_custom_instructions: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "inputs": inputs.to_dict(),
        "generatedData": state.to_dict(),
        "stepCustomInstructions": dict(step_custom_instructions or {}),
        "exportDate": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


def import_snapshot(data: Any) -> ProjectSnapshot:
    """Validate and decode a snapshot; nothing is applied when it is invalid."""

    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid project file: the content is not valid JSON.") from exc

    if not isinstance(data, dict):
        raise ValidationError("Invalid project file: expected a JSON object.")
    if not isinstance(data.get("inputs"), dict) or not isinstance(data.get("generatedData"), dict):
        raise ValidationError("Invalid project file: 'inputs' and 'generatedData' are required.")

    instructions_raw = data.get("stepCustomInstructions")
    instructions: Dict[str, str] = {}
    if isinstance(instructions_raw, dict):
        instructions = {
            str(key): str(value) for key, value in instructions_raw.items() if isinstance(value, str)
        }

    return ProjectSnapshot(
        inputs=StoryInputs.from_dict(data["inputs"]),
        state=NarrativeState.from_dict(data["generatedData"]),
        step_custom_instructions=instructions,
        export_date=data.get("exportDate") if isinstance(data.get("exportDate"), str) else None,
    )


def load_project(key: str) -> Optional[ProjectSnapshot]:
    """Stored snapshot for ``key``; ``None`` when nothing (valid) is stored."""

    from ..models import StoredProject

    record = db.session.get(StoredProject, key)
    if record is None:
        return None
    try:
        return import_snapshot(record.payload)
    except ValidationError as exc:
        current_app.logger.warning("Ignoring unreadable snapshot for project '%s': %s", key, exc)
        return None


def save_project(key: str, payload: Dict[str, Any]) -> None:
    from ..models import StoredProject

    record = db.session.get(StoredProject, key)
    if record is None:
        record = StoredProject(key=key)
    record.payload = json.dumps(payload, ensure_ascii=False)
    db.session.add(record)
    db.session.commit()


__all__ = [
    "ProjectSnapshot",
    "SNAPSHOT_VERSION",
    "export_snapshot",
    "import_snapshot",
    "load_project",
    "save_project",
]
