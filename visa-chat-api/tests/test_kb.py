import json

import pytest
from pydantic import ValidationError

from visa_chat.config import DEFAULT_KB_PATH
from visa_chat.kb import KbEntry, KnowledgeBase, KnowledgeBaseError, find_match, slugify


def _write(tmp_path, payload) -> str:
    path = tmp_path / "kb.json"
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")
    return str(path)


def test_slugify_normalizes_runs_and_edges():
    assert slugify("Application Fees") == "application-fees"
    assert slugify("  --How long?? does it take!  ") == "how-long-does-it-take"
    assert slugify("DS-160 / form") == "ds-160-form"
    assert slugify("???") == ""
    assert slugify("") == ""


def test_exact_slug_match_is_case_insensitive():
    entries = [KbEntry(id="application-fees", text="Fee is $160.")]
    assert find_match("APPLICATION fees", entries).text == "Fee is $160."


def test_every_entry_resolves_by_its_own_id(kb):
    for entry in kb:
        assert kb.find_match(entry.id) == entry
        assert kb.find_match(entry.id.upper()) == entry


def test_exact_match_beats_earlier_substring_match():
    entries = [
        KbEntry(id="visa-fees-student", text="Student fees."),
        KbEntry(id="visa-fees", text="General fees."),
    ]
    assert find_match("visa fees", entries).text == "General fees."


def test_id_containing_slug_comes_before_slug_containing_id():
    entries = [
        KbEntry(id="fees", text="Short id."),
        KbEntry(id="student-fees-overview", text="Long id."),
    ]
    assert find_match("student fees", entries).text == "Long id."


def test_slug_containing_id_matches_first_in_order():
    entries = [
        KbEntry(id="processing-time", text="3 to 5 weeks."),
        KbEntry(id="fees", text="Fee is $160."),
    ]
    assert find_match("what are the fees for a tourist visa", entries).text == "Fee is $160."


def test_short_id_matches_broadly():
    entries = [KbEntry(id="a", text="One letter.")]
    assert find_match("anything at all", entries).text == "One letter."


def test_text_substring_is_last_resort():
    entries = [
        KbEntry(id="processing-time", text="Processing takes 3 to 5 weeks."),
        KbEntry(id="required-documents", text="Bring your passport."),
    ]
    assert find_match("YOUR PASSPORT", entries).id == "required-documents"


def test_no_match_returns_none(kb):
    assert kb.find_match("How long does it take?") is None


def test_empty_slug_skips_id_stages(kb):
    assert kb.find_match("???") is None
    assert kb.find_match("") is None


def test_from_file_loads_in_order(tmp_path):
    path = _write(tmp_path, [{"id": "b", "text": "second"}, {"id": "a", "text": "first"}])
    kb = KnowledgeBase.from_file(path)
    assert [e.id for e in kb] == ["b", "a"]
    assert len(kb) == 2


def test_bundled_kb_loads():
    kb = KnowledgeBase.from_file(DEFAULT_KB_PATH)
    assert len(kb) > 0
    assert kb.find_match("Application Fees").id == "application-fees"


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        {"id": "a", "text": "object instead of list"},
        [],
        [{"id": "a"}],
        [{"id": "", "text": "blank id"}],
        [{"id": "a", "text": "one"}, {"id": "A", "text": "duplicate"}],
    ],
)
def test_malformed_sources_are_fatal(tmp_path, payload):
    with pytest.raises(KnowledgeBaseError):
        KnowledgeBase.from_file(_write(tmp_path, payload))


def test_missing_file_is_fatal(tmp_path):
    with pytest.raises(KnowledgeBaseError):
        KnowledgeBase.from_file(str(tmp_path / "missing.json"))


def test_entries_are_immutable(kb):
    with pytest.raises(ValidationError):
        kb.entries[0].text = "changed"
