"""
Verse text resolution shared by the lookup route, the single-reference route
and the analysis renderer.

Three sources can carry text for a reference: citation rows stored for the
dream, the built-in KJV fallback table, and a reconstruction from the
individual verses of a range. Every function here is pure; callers load the
rows.
"""
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from api.ref_parser import (
    expand_range,
    format_reference,
    is_range,
    normalize_reference,
    parse_citation,
    split_reference,
)

PLACEHOLDER_PREFIX = "Verse text not available"

NOTE_FALLBACK = "standard verse text"
NOTE_MISSING = "no verse text found"

FALLBACK_VERSES: Mapping[str, str] = MappingProxyType(
    {
        "Genesis 1:1": "In the beginning God created the heaven and the earth.",
        "Exodus 14:21": "And Moses stretched out his hand over the sea; and the LORD caused the sea to go back by a strong east wind all that night, and made the sea dry land, and the waters were divided.",
        "Deuteronomy 8:10": "When thou hast eaten and art full, then thou shalt bless the LORD thy God for the good land which he hath given thee.",
        "1 Kings 6:19": "And the oracle he prepared in the house within, to set there the ark of the covenant of the LORD.",
        "Psalm 23:1": "The Lord is my shepherd; I shall not want.",
        "Psalm 23:2": "He maketh me to lie down in green pastures: he leadeth me beside the still waters.",
        "Isaiah 40:29": "He giveth power to the faint; and to them that have no might he increaseth strength.",
        "Isaiah 40:31": "But they that wait upon the LORD shall renew their strength; they shall mount up with wings as eagles; they shall run, and not be weary; and they shall walk, and not faint.",
        "Isaiah 45:3": "And I will give thee the treasures of darkness, and hidden riches of secret places, that thou mayest know that I, the LORD, which call thee by thy name, am the God of Israel.",
        "Jeremiah 29:11": "For I know the thoughts that I think toward you, saith the LORD, thoughts of peace, and not of evil, to give you an expected end.",
        "Matthew 5:3": "Blessed are the poor in spirit: for theirs is the kingdom of heaven.",
        "Matthew 11:28": "Come unto me, all ye that labour and are heavy laden, and I will give you rest.",
        "John 3:16": "For God so loved the world, that he gave his only begotten Son, that whosoever believeth in him should not perish, but have everlasting life.",
        "John 8:12": "Then spake Jesus again unto them, saying, I am the light of the world: he that followeth me shall not walk in darkness, but shall have the light of life.",
        "Galatians 6:7": "Be not deceived; God is not mocked: for whatsoever a man soweth, that shall he also reap.",
        "Philippians 4:13": "I can do all things through Christ which strengtheneth me.",
        "Philippians 4:19": "But my God shall supply all your need according to his riches in glory by Christ Jesus.",
        "1 Peter 5:7": "Casting all your care upon him; for he careth for you.",
    }
)


@dataclass(frozen=True)
class VerseResolution:
    text: str
    source: str
    is_fallback: bool = False

    def as_dict(self) -> dict:
        return {"text": self.text, "source": self.source, "is_fallback": self.is_fallback}


def placeholder_text(reference: str) -> str:
    return f"{PLACEHOLDER_PREFIX} for {reference}"


def has_verse_text(text: Optional[str], reference: str) -> bool:
    """Rows written without model text store the reference itself as full_text."""
    if not text or not text.strip():
        return False
    stripped = normalize_reference(text)
    if stripped.startswith(PLACEHOLDER_PREFIX):
        return False
    if stripped == normalize_reference(reference):
        return False
    return parse_citation(stripped) is None


def row_reference(row: dict) -> str:
    return format_reference(row["bible_book"], row["chapter"], row["verse"])


def index_citation_rows(rows: Iterable[dict]) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for row in rows or []:
        key = row_reference(row)
        text = row.get("full_text")
        if key in index or not has_verse_text(text, key):
            continue
        index[key] = text
    return index


def _compact(reference: str) -> str:
    return re.sub(r"\s+", "", reference)


def _resolve_single(
    reference: str, citation_texts: Mapping[str, str], fallback: Mapping[str, str]
) -> Optional[VerseResolution]:
    normalized = normalize_reference(reference)

    text = citation_texts.get(reference)
    if text:
        return VerseResolution(text, "exact")
    text = citation_texts.get(normalized)
    if text:
        return VerseResolution(text, "normalized")

    compact = _compact(normalized)
    for key, value in citation_texts.items():
        if value and _compact(key) == compact:
            return VerseResolution(value, "no-space")

    parts = split_reference(normalized)
    reformatted = format_reference(*parts) if parts else None
    if reformatted:
        text = citation_texts.get(reformatted)
        if text:
            return VerseResolution(text, "reformatted")

    text = fallback.get(reference)
    if text:
        return VerseResolution(text, "fallback", True)
    for candidate in (normalized, reformatted):
        if candidate and fallback.get(candidate):
            return VerseResolution(fallback[candidate], "fallback-normalized", True)
    return None


def resolve_verse_text(
    reference: str,
    citation_texts: Optional[Mapping[str, str]] = None,
    fallback: Mapping[str, str] = FALLBACK_VERSES,
) -> VerseResolution:
    """
    Best available text for one reference. Never raises; an unresolvable
    reference yields the placeholder with source "missing" / "missing-range".

    citation_texts maps normalized references to stored text, as built by
    index_citation_rows.
    """
    citation_texts = citation_texts or {}
    reference = (reference or "").strip()
    normalized = normalize_reference(reference)

    if not is_range(normalized):
        found = _resolve_single(reference, citation_texts, fallback)
        if found:
            return found
        return VerseResolution(placeholder_text(reference), "missing")

    for key in (reference, normalized):
        if citation_texts.get(key):
            return VerseResolution(citation_texts[key], "exact-range")
    for key in (reference, normalized):
        if fallback.get(key):
            return VerseResolution(fallback[key], "fallback-range", True)

    texts = []
    used_fallback = False
    for verse_ref in expand_range(normalized):
        found = _resolve_single(verse_ref, citation_texts, fallback)
        if not found:
            continue
        texts.append(found.text)
        used_fallback = used_fallback or found.is_fallback

    if texts:
        source = "expanded-fallback" if used_fallback else "expanded"
        return VerseResolution(" ".join(texts), source, used_fallback)
    return VerseResolution(placeholder_text(reference), "missing-range")


def build_verse_lookup(
    bible_refs: Optional[List[str]],
    rows: Iterable[dict],
    fallback: Mapping[str, str] = FALLBACK_VERSES,
) -> Dict[str, VerseResolution]:
    rows = list(rows or [])
    bible_refs = list(bible_refs or [])
    row_texts = index_citation_rows(rows)
    lookup: Dict[str, VerseResolution] = {}

    # A range is stored under its first verse, so a range ref matches that row.
    for ref in bible_refs:
        parts = split_reference(ref)
        if not parts:
            continue
        text = row_texts.get(format_reference(*parts))
        if text:
            lookup[ref] = VerseResolution(text, "exact-range" if is_range(ref) else "exact")

    for row in rows:
        key = row_reference(row)
        if key in lookup:
            continue
        if key in row_texts:
            lookup[key] = VerseResolution(row_texts[key], "normalized")
        else:
            lookup[key] = resolve_verse_text(key, row_texts, fallback)

    for ref in bible_refs:
        if ref not in lookup:
            lookup[ref] = resolve_verse_text(ref, row_texts, fallback)

    return lookup


def resolution_note(resolution: VerseResolution) -> Optional[str]:
    if resolution.source.startswith("missing"):
        return NOTE_MISSING
    if resolution.is_fallback:
        return NOTE_FALLBACK
    return None


def annotate_citations(
    text: Optional[str],
    refs: Optional[List[str]],
    lookup: Mapping[str, VerseResolution],
) -> List[dict]:
    if not text:
        return []
    by_normalized = {normalize_reference(ref): ref for ref in refs or []}

    segments = []
    for part in re.split(r"(\([^)]*\))", text):
        if not part:
            continue
        ref = None
        if part.startswith("(") and part.endswith(")"):
            ref = by_normalized.get(normalize_reference(part[1:-1]))
        if ref is None:
            segments.append({"text": part})
            continue
        resolution = lookup.get(ref) or resolve_verse_text(ref)
        segments.append(
            {
                "text": part,
                "reference": ref,
                "verse_text": resolution.text,
                "source": resolution.source,
                "note": resolution_note(resolution),
            }
        )
    return segments
