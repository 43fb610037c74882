import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from deepstory.services.archive import (
    NO_CHAPTER_SUMMARY,
    NO_CHARACTER_STATE,
    NO_GLOBAL_SUMMARY,
    StateArchive,
    StateArchiveEntry,
    initial_entry,
)
from deepstory.services.state import NarrativeState


def _entry(number, summary=None):
    return StateArchiveEntry(
        chapter_num=number,
        title=f"第{number}章存档",
        global_summary=summary or f"摘要{number}",
        character_state=f"状态{number}",
        chapter_summary=f"章节{number}",
        timestamp=1700000000000 + number,
    )


def test_upsert_replaces_by_chapter_and_keeps_order():
    archive = StateArchive()
    archive.upsert(_entry(3))
    archive.upsert(_entry(0))
    archive.upsert(_entry(1))
    archive.upsert(_entry(3, summary="新的第三章"))

    assert [entry.chapter_num for entry in archive] == [0, 1, 3]
    assert archive.get(3).global_summary == "新的第三章"
    assert archive.is_consistent()


def test_resolve_context_uses_latest_entry_before_target():
    archive = StateArchive([_entry(0), _entry(2), _entry(5)])
    live = NarrativeState(global_summary="实时摘要", current_character_state="实时状态")

    context = archive.resolve_context(5, live)
    assert context.source_chapter == 2
    assert context.global_summary == "摘要2"
    assert context.character_state == "状态2"
    assert context.chapter_summary == "章节2"

    assert archive.resolve_context(2, live).source_chapter == 0
    assert archive.resolve_context(9, live).source_chapter == 5


def test_first_chapter_always_reads_live_state():
    archive = StateArchive([_entry(0)])
    live = NarrativeState(global_summary="实时摘要", current_character_state="实时状态")

    context = archive.resolve_context(1, live)

    assert context.source_chapter is None
    assert context.global_summary == "实时摘要"
    assert context.character_state == "实时状态"
    assert context.chapter_summary == NO_CHAPTER_SUMMARY


def test_live_fallback_uses_dna_then_placeholders():
    archive = StateArchive([_entry(4)])

    with_dna = archive.resolve_context(3, NarrativeState(core_dna="核心DNA"))
    assert with_dna.source_chapter is None
    assert with_dna.global_summary == "核心DNA"
    assert with_dna.character_state == NO_CHARACTER_STATE

    empty = StateArchive().resolve_context(1, NarrativeState())
    assert empty.global_summary == NO_GLOBAL_SUMMARY


def test_resolve_context_has_no_side_effects():
    archive = StateArchive([_entry(0), _entry(1)])
    before = archive.entries

    archive.resolve_context(2, NarrativeState())

    assert archive.entries == before


def test_reset_seeds_initial_entry():
    archive = StateArchive([_entry(1), _entry(2)])
    archive.reset(initial_entry("DNA文本", "初始角色状态"))

    assert len(archive) == 1
    entry = archive.get(0)
    assert entry.title == "初始设定"
    assert entry.global_summary == "DNA文本"
    assert entry.character_state == "初始角色状态"
    assert entry.chapter_summary == "无 (初始状态)"

    assert initial_entry("", "状态").global_summary == "暂无"


def test_entries_load_from_json_without_duplicates():
    archive = StateArchive(
        [
            StateArchiveEntry.from_dict({"chapterNum": 2, "globalSummary": "旧", "timestamp": 5}),
            StateArchiveEntry.from_dict({"chapterNum": "1", "globalSummary": "一"}),
            StateArchiveEntry.from_dict({"chapterNum": 2, "globalSummary": "新", "timestamp": 9}),
        ]
    )

    assert [entry.chapter_num for entry in archive] == [1, 2]
    assert archive.get(2).global_summary == "新"
    assert archive.get(2).to_dict()["timestamp"] == 9
