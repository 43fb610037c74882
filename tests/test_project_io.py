import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from deepstory import create_app
from deepstory.config import TestConfig
from deepstory.services.archive import StateArchive, StateArchiveEntry
from deepstory.services.errors import ValidationError
from deepstory.services.project_io import (
    SNAPSHOT_VERSION,
    export_snapshot,
    import_snapshot,
    load_project,
    save_project,
)
from deepstory.services.state import Chapter, NarrativeState, StoryInputs
from deepstory.services.text_export import render_chapters_text


def _state():
    return NarrativeState(
        core_dna="## 核心DNA (STORY_DNA)\n代价",
        global_summary="摘要",
        chapter_blueprint="### 第1章 - 开端",
        chapters=[
            Chapter(title="开端", content="正文一", twist_level="高", chapter_summary="一章摘要"),
            None,
            Chapter(title="转折", content="正文三"),
        ],
        state_history=StateArchive(
            [
                StateArchiveEntry(chapter_num=0, title="初始设定", global_summary="初始", timestamp=1),
                StateArchiveEntry(chapter_num=1, title="第1章存档", global_summary="摘要", timestamp=2),
            ]
        ),
    )


def test_snapshot_survives_json_round_trip():
    inputs = StoryInputs(topic="神器", genre="修仙", number_of_chapters=30, novel_title="星海")
    payload = export_snapshot(inputs, _state(), {"dna": "更黑暗"})

    assert payload["version"] == SNAPSHOT_VERSION
    assert payload["exportDate"].endswith("Z")
    assert payload["generatedData"]["chapters"][1] is None
    assert payload["generatedData"]["chapters"][0]["twist"] == "高"

    snapshot = import_snapshot(json.dumps(payload, ensure_ascii=False))

    assert snapshot.inputs == inputs
    assert snapshot.state == _state()
    assert snapshot.step_custom_instructions == {"dna": "更黑暗"}
    assert snapshot.state.chapters[2].chapter_summary is None


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2]",
        json.dumps({"inputs": {}}),
        json.dumps({"inputs": [], "generatedData": {}}),
    ],
)
def test_invalid_snapshots_are_rejected(raw):
    with pytest.raises(ValidationError) as excinfo:
        import_snapshot(raw)
    assert "Invalid project file" in str(excinfo.value)


def test_missing_fields_fall_back_to_defaults():
    snapshot = import_snapshot({"inputs": {"topic": "x", "wordCount": "abc"}, "generatedData": {}})

    assert snapshot.inputs.word_count == 2000
    assert snapshot.inputs.number_of_chapters == 12
    assert snapshot.state.chapters == []
    assert len(snapshot.state.state_history) == 0


def test_projects_persist_in_the_database():
    app = create_app(TestConfig)
    with app.app_context():
        assert load_project("demo") is None

        save_project("demo", export_snapshot(StoryInputs(topic="一"), NarrativeState(core_dna="DNA")))
        save_project("demo", export_snapshot(StoryInputs(topic="二"), NarrativeState(core_dna="DNA")))

        snapshot = load_project("demo")
        assert snapshot.inputs.topic == "二"
        assert snapshot.state.core_dna == "DNA"


def test_text_export_skips_missing_chapters():
    inputs = StoryInputs(novel_title="星海")
    text = render_chapters_text(inputs, _state().chapters)

    assert text.startswith("星海\n")
    assert "第1章 开端" in text
    assert "第2章" not in text
    assert "第3章 转折" in text
    assert "(暂无正文)" not in text
