import re
from typing import List, Optional, Tuple

from api.events import log_event

BOOK_PATTERN = r"(?:[1-3]\s*)?[A-Za-z][A-Za-z\s]*?"

CITATION_RE = re.compile(
    rf"^(?P<book>{BOOK_PATTERN})\s*(?P<chapter>[0-9]+):(?P<verse>[0-9]+)(?:-(?P<range_end>[0-9]+))?$"
)
RANGE_RE = re.compile(
    rf"^(?P<book>{BOOK_PATTERN})\s*(?P<chapter>[0-9]+):(?P<start>[0-9]+)-(?P<end>[0-9]+)$"
)
# Unanchored at the end: a range yields its first verse.
LENIENT_RE = re.compile(
    rf"^\s*(?P<book>{BOOK_PATTERN})\s*(?P<chapter>[0-9]+)\s*:\s*(?P<verse>[0-9]+)"
)
PARENTHETICAL_RE = re.compile(r"\(([^)]+)\)")


def normalize_book(book: str) -> str:
    return re.sub(r"\s+", " ", book or "").strip()


def normalize_reference(reference: str) -> str:
    return re.sub(r"\s+", " ", reference or "").strip()


def format_reference(book: str, chapter: int, verse: int) -> str:
    return f"{normalize_book(book)} {chapter}:{verse}"


def parse_citation(text: str) -> Optional[dict]:
    """
    "Genesis 1:1"  -> {"book": "Genesis", "chapter": 1, "verse": 1}
    "Psalm 23:4-6" -> {"book": "Psalm", "chapter": 23, "verse": 4, "range_end": 6}

    A range end that does not exceed the start verse is dropped; the
    citation stays valid as a single verse.
    """
    if not text:
        return None
    m = CITATION_RE.match(text.strip())
    if not m:
        return None

    chapter = int(m.group("chapter"))
    verse = int(m.group("verse"))
    if chapter <= 0 or verse <= 0:
        return None

    parsed = {"book": normalize_book(m.group("book")), "chapter": chapter, "verse": verse}
    if m.group("range_end"):
        range_end = int(m.group("range_end"))
        if range_end > verse:
            parsed["range_end"] = range_end
    return parsed


def extract_citations(text: str) -> List[str]:
    if not text:
        return []
    citations = []
    for candidate in PARENTHETICAL_RE.findall(text):
        candidate = candidate.strip()
        if parse_citation(candidate) is not None:
            citations.append(candidate)
    return citations


def is_range(reference: str) -> bool:
    return bool(RANGE_RE.match((reference or "").strip()))


def split_reference(reference: str) -> Optional[Tuple[str, int, int]]:
    m = LENIENT_RE.match(reference or "")
    if not m:
        return None
    return normalize_book(m.group("book")), int(m.group("chapter")), int(m.group("verse"))


def expand_range(reference: str) -> List[str]:
    raw = (reference or "").strip()
    m = RANGE_RE.match(raw)
    if not m:
        return [raw]

    book = normalize_book(m.group("book"))
    chapter = int(m.group("chapter"))
    start = int(m.group("start"))
    end = int(m.group("end"))
    if start <= 0 or start > end:
        log_event("verse_range_invalid", {"reference": raw})
        return [raw]

    return [f"{book} {chapter}:{verse}" for verse in range(start, end + 1)]
