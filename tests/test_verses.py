from api.verses import (
    FALLBACK_VERSES,
    annotate_citations,
    build_verse_lookup,
    has_verse_text,
    placeholder_text,
    resolve_verse_text,
)


def _row(book, chapter, verse, full_text, order=1):
    return {
        "bible_book": book,
        "chapter": chapter,
        "verse": verse,
        "full_text": full_text,
        "citation_order": order,
    }


def test_resolve_exact_citation_beats_fallback():
    resolution = resolve_verse_text("John 3:16", {"John 3:16": "stored text"})
    assert resolution.text == "stored text"
    assert resolution.source == "exact"
    assert resolution.is_fallback is False


def test_resolve_normalized_whitespace():
    resolution = resolve_verse_text("John  3:16", {"John 3:16": "stored text"})
    assert resolution.source == "normalized"


def test_resolve_ignores_spacing_in_book():
    resolution = resolve_verse_text("1Peter 5:7", {"1 Peter 5:7": "stored text"})
    assert resolution.text == "stored text"
    assert resolution.source == "no-space"


def test_resolve_fallback_table():
    resolution = resolve_verse_text("Philippians 4:13")
    assert resolution.text == FALLBACK_VERSES["Philippians 4:13"]
    assert resolution.source == "fallback"
    assert resolution.is_fallback is True


def test_resolve_fallback_after_normalizing():
    resolution = resolve_verse_text("Philippians  4:13")
    assert resolution.source == "fallback-normalized"
    assert resolution.is_fallback is True


def test_resolve_missing_returns_placeholder():
    resolution = resolve_verse_text("Obadiah 1:1")
    assert resolution.text == placeholder_text("Obadiah 1:1")
    assert resolution.source == "missing"


def test_resolve_is_stable():
    texts = {"John 3:16": "stored text"}
    assert resolve_verse_text("John 3:16", texts) == resolve_verse_text("John 3:16", texts)


def test_resolve_range_from_fallback_verses():
    resolution = resolve_verse_text("Psalm 23:1-2")
    assert resolution.source == "expanded-fallback"
    assert resolution.text == f"{FALLBACK_VERSES['Psalm 23:1']} {FALLBACK_VERSES['Psalm 23:2']}"
    assert resolution.is_fallback is True


def test_resolve_range_from_citation_rows():
    resolution = resolve_verse_text("Psalm 23:1-2", {"Psalm 23:1": "one", "Psalm 23:2": "two"})
    assert resolution.text == "one two"
    assert resolution.source == "expanded"
    assert resolution.is_fallback is False


def test_resolve_whole_range_text():
    resolution = resolve_verse_text("Psalm 23:1-2", {"Psalm 23:1-2": "whole passage"})
    assert resolution.source == "exact-range"


def test_resolve_missing_range():
    resolution = resolve_verse_text("Obadiah 1:1-3")
    assert resolution.source == "missing-range"
    assert resolution.text == placeholder_text("Obadiah 1:1-3")


def test_has_verse_text_rejects_reference_and_placeholder():
    assert not has_verse_text("Isaiah 40:31", "Isaiah 40:31")
    assert not has_verse_text(placeholder_text("Isaiah 40:31"), "Isaiah 40:31")
    assert not has_verse_text("  ", "Isaiah 40:31")
    assert has_verse_text("But they that wait upon the LORD", "Isaiah 40:31")


def test_lookup_row_without_text_uses_fallback():
    rows = [_row("Isaiah", 40, 31, "Isaiah 40:31")]
    lookup = build_verse_lookup(["Isaiah 40:31"], rows)
    assert lookup["Isaiah 40:31"].source == "fallback"
    assert lookup["Isaiah 40:31"].text == FALLBACK_VERSES["Isaiah 40:31"]


def test_lookup_row_with_text_is_exact():
    rows = [_row("John", 3, 16, "stored text")]
    lookup = build_verse_lookup(["John 3:16"], rows)
    assert lookup["John 3:16"].text == "stored text"
    assert lookup["John 3:16"].source == "exact"


def test_lookup_range_matches_first_verse_row():
    rows = [_row("Psalm", 23, 1, "row text")]
    lookup = build_verse_lookup(["Psalm 23:1-3"], rows)
    assert lookup["Psalm 23:1-3"].text == "row text"
    assert lookup["Psalm 23:1-3"].source == "exact-range"
    assert lookup["Psalm 23:1"].source == "normalized"


def test_lookup_covers_every_ref_and_row():
    rows = [_row("Matthew", 5, 3, "stored text")]
    lookup = build_verse_lookup(["Genesis 1:1", "Obadiah 1:1"], rows)
    assert set(lookup) == {"Genesis 1:1", "Obadiah 1:1", "Matthew 5:3"}
    assert lookup["Obadiah 1:1"].source == "missing"
    assert lookup["Genesis 1:1"].source == "fallback"


def test_lookup_first_row_wins():
    rows = [_row("John", 3, 16, "first", 1), _row("John", 3, 16, "second", 2)]
    lookup = build_verse_lookup(["John 3:16"], rows)
    assert lookup["John 3:16"].text == "first"


def test_annotate_citations_marks_references():
    refs = ["Isaiah 40:31"]
    lookup = build_verse_lookup(refs, [])
    segments = annotate_citations("Wait on God (Isaiah 40:31). Rest (see below).", refs, lookup)

    assert [s["text"] for s in segments] == [
        "Wait on God ",
        "(Isaiah 40:31)",
        ". Rest ",
        "(see below)",
        ".",
    ]
    cited = segments[1]
    assert cited["reference"] == "Isaiah 40:31"
    assert cited["verse_text"] == FALLBACK_VERSES["Isaiah 40:31"]
    assert cited["note"] == "standard verse text"
    assert "reference" not in segments[3]


def test_annotate_citations_missing_note():
    refs = ["Obadiah 1:1"]
    segments = annotate_citations("Look (Obadiah 1:1)", refs, build_verse_lookup(refs, []))
    assert segments[1]["note"] == "no verse text found"


def test_annotate_citations_empty_text():
    assert annotate_citations("", ["John 3:16"], {}) == []
