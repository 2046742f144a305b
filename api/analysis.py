import json
import re
import string
import time
from typing import Callable, Dict, List, Optional

import psycopg2
import requests

from api.config import (
    DB,
    LLM_SLOW_MS,
    OPENAI_API_KEY,
    OPENAI_MAX_TOKENS,
    OPENAI_MODEL,
    OPENAI_TEMPERATURE,
    OPENAI_TIMEOUT_SEC,
    OPENAI_URL,
)
from api.dreams import (
    insert_citations,
    insert_interaction,
    mark_analysis_failed,
    update_dream_analysis,
)
from api.events import log_event
from api.ref_parser import extract_citations, normalize_reference, parse_citation

STATUS_ANALYZED = "analyzed"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"

DEFAULT_TOPIC = "Your dream contains spiritual symbolism."
DEFAULT_CONCLUSION = "Consider how these insights apply to your life."

MAX_TAGS = 5
MIN_TAG_LENGTH = 5
TAG_STOPWORDS = {
    "about",
    "after",
    "again",
    "being",
    "could",
    "every",
    "might",
    "other",
    "should",
    "their",
    "there",
    "these",
    "those",
    "through",
    "where",
    "which",
    "while",
    "within",
    "would",
    "yourself",
}

SYSTEM_PROMPT = (
    "You are a biblical dream interpreter who provides concise analysis with scripture references."
)

RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "DreamAnalysis",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "topicSentence": {"type": "string"},
                "supportingPoints": {"type": "array", "items": {"type": "string"}},
                "conclusionSentence": {"type": "string"},
                "analysis": {"type": "string"},
                "biblicalReferences": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "citation": {"type": "string"},
                            "verseText": {"type": "string"},
                        },
                        "additionalProperties": False,
                        "required": ["citation", "verseText"],
                    },
                },
            },
            "additionalProperties": False,
            "required": [
                "topicSentence",
                "supportingPoints",
                "conclusionSentence",
                "analysis",
                "biblicalReferences",
            ],
        },
    },
}


class InterpretationError(Exception):
    pass


def build_prompt(dream_text: str, topic: str = "dream interpretation") -> str:
    return (
        "You are a dream interpreter specializing in Christian biblical interpretation.\n"
        "Analyze the following dream, connecting it to biblical themes, symbols, and scriptures:\n"
        f'"{dream_text}"\n\n'
        "1. Start with a topic sentence that captures the main spiritual theme of the dream.\n"
        "2. Give exactly 3 supporting points, each ending with one Bible citation in "
        "parentheses, e.g. (Isaiah 44:3).\n"
        "3. End with a gentle, actionable concluding sentence.\n"
        f"Focus on: {topic}\n"
        "Also return the full King James text of every cited verse in biblicalReferences."
    )


def request_interpretation(dream_text: str) -> str:
    payload = {
        "model": OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(dream_text)},
        ],
        "temperature": OPENAI_TEMPERATURE,
        "max_tokens": OPENAI_MAX_TOKENS,
        "response_format": RESPONSE_FORMAT,
    }
    headers = {"Authorization": f"Bearer {OPENAI_API_KEY}"}
    start = time.perf_counter()
    try:
        res = requests.post(OPENAI_URL, json=payload, headers=headers, timeout=OPENAI_TIMEOUT_SEC)
        res.raise_for_status()
        data = res.json()
    except (requests.RequestException, ValueError) as exc:
        log_event("llm_error", {"model": OPENAI_MODEL, "error": type(exc).__name__})
        raise InterpretationError(f"interpretation request failed: {exc}") from exc

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_event("llm_latency", {"model": OPENAI_MODEL, "elapsed_ms": elapsed_ms})
    if elapsed_ms > LLM_SLOW_MS:
        log_event("llm_slow", {"model": OPENAI_MODEL, "elapsed_ms": elapsed_ms})

    choices = data.get("choices") or []
    content = (choices[0].get("message") or {}).get("content") if choices else None
    if not content:
        raise InterpretationError("interpretation response has no content")
    return content


def _extract_json(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        return data
    if "{" in text and "}" in text:
        start = text.find("{")
        end = text.rfind("}")
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None
    return None


_JSON_STRING = r'"((?:[^"\\]|\\.)*)"'


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value


def _recover_string(text: str, field: str) -> Optional[str]:
    m = re.search(rf'"{field}"\s*:\s*{_JSON_STRING}', text, flags=re.S)
    return _unescape(m.group(1)).strip() if m else None


def _recover_fields(text: str) -> dict:
    """Field-level salvage for truncated or otherwise broken JSON."""
    recovered: Dict[str, object] = {}
    for field in ("topicSentence", "conclusionSentence", "analysis"):
        value = _recover_string(text, field)
        if value:
            recovered[field] = value

    m = re.search(r'"supportingPoints"\s*:\s*\[(.*?)(?:\]|$)', text, flags=re.S)
    if m:
        recovered["supportingPoints"] = [
            _unescape(p).strip() for p in re.findall(_JSON_STRING, m.group(1), flags=re.S)
        ]

    pairs = re.findall(
        rf'"citation"\s*:\s*{_JSON_STRING}\s*,\s*"verseText"\s*:\s*{_JSON_STRING}',
        text,
        flags=re.S,
    )
    if pairs:
        recovered["biblicalReferences"] = [
            {"citation": _unescape(c), "verseText": _unescape(v)} for c, v in pairs
        ]
    return recovered


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in re.split(r"(?<=[.!?])\s+", (text or "").strip()) if s.strip()]


def _from_plain_text(text: str) -> dict:
    sentences = split_sentences(text)
    if not sentences:
        return {}
    return {
        "topicSentence": sentences[0],
        "supportingPoints": sentences[1:-1],
        "conclusionSentence": sentences[-1],
        "analysis": " ".join(sentences),
    }


def _structured_references(items) -> List[dict]:
    refs = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        citation = item.get("citation")
        if not isinstance(citation, str) or not citation.strip():
            continue
        verse_text = item.get("verseText")
        refs.append(
            {
                "citation": citation.strip(),
                "verse_text": verse_text.strip() if isinstance(verse_text, str) else "",
            }
        )
    return refs


def parse_analysis(content: str) -> dict:
    """
    Normalize the model output into topic_sentence, supporting_points,
    conclusion_sentence, analysis and biblical_references.

    Tries strict JSON, then the outermost {...} slice, then per-field regex
    recovery, then plain prose. Raises InterpretationError when none of these
    yield anything usable.
    """
    text = (content or "").strip()
    if not text:
        raise InterpretationError("empty interpretation response")

    data = _extract_json(text)
    source = "json"
    if data is None:
        data = _recover_fields(text)
        source = "recovered"
        if not data and "{" not in text:
            data = _from_plain_text(text)
            source = "plain_text"
    if not any(data.get(k) for k in ("topicSentence", "supportingPoints", "conclusionSentence", "analysis")):
        raise InterpretationError("interpretation response has no usable fields")

    points = data.get("supportingPoints")
    if not isinstance(points, list):
        points = []
    points = [p.strip() for p in points if isinstance(p, str) and p.strip()]
    topic = data.get("topicSentence") if isinstance(data.get("topicSentence"), str) else ""
    conclusion = (
        data.get("conclusionSentence") if isinstance(data.get("conclusionSentence"), str) else ""
    )
    topic = topic.strip() or DEFAULT_TOPIC
    conclusion = conclusion.strip() or DEFAULT_CONCLUSION
    analysis = data.get("analysis") if isinstance(data.get("analysis"), str) else ""
    analysis = analysis.strip() or " ".join([topic, *points, conclusion])

    if source != "json":
        log_event("analysis_response_recovered", {"source": source})
    return {
        "topic_sentence": topic,
        "supporting_points": points,
        "conclusion_sentence": conclusion,
        "analysis": analysis,
        "biblical_references": _structured_references(data.get("biblicalReferences")),
    }


def derive_tags(text: str) -> List[str]:
    tags: List[str] = []
    for token in (text or "").lower().split():
        token = token.strip(string.punctuation + "“”‘’")
        if len(token) < MIN_TAG_LENGTH or token in TAG_STOPWORDS:
            continue
        if not re.fullmatch(r"[a-z][a-z'-]*", token):
            continue
        if token in tags:
            continue
        tags.append(token)
        if len(tags) >= MAX_TAGS:
            break
    return tags


def build_dream_update(parsed: dict) -> dict:
    analysis = parsed["analysis"]
    refs: List[str] = []
    for point in parsed["supporting_points"]:
        refs.extend(extract_citations(point))

    return {
        "dream_summary": " ".join(split_sentences(analysis)[:2]),
        "analysis_summary": analysis,
        "topic_sentence": parsed["topic_sentence"],
        "supporting_points": parsed["supporting_points"],
        "conclusion_sentence": parsed["conclusion_sentence"],
        "formatted_analysis": analysis,
        "tags": derive_tags(analysis),
        "bible_refs": refs,
        "raw_analysis": parsed,
    }


def _compact(reference: str) -> str:
    return re.sub(r"\s+", "", reference)


def build_citation_rows(dream_id: str, refs: List[str], structured_refs: List[dict]) -> List[dict]:
    verse_texts = {}
    compact_texts = {}
    for item in structured_refs or []:
        if not item.get("verse_text"):
            continue
        key = normalize_reference(item["citation"])
        verse_texts.setdefault(key, item["verse_text"])
        compact_texts.setdefault(_compact(key), item["verse_text"])

    rows = []
    for ref in refs:
        parsed = parse_citation(ref)
        if parsed is None:
            continue
        normalized = normalize_reference(ref)
        full_text = verse_texts.get(normalized) or compact_texts.get(_compact(normalized)) or normalized
        rows.append(
            {
                "dream_entry_id": dream_id,
                "bible_book": parsed["book"],
                "chapter": parsed["chapter"],
                "verse": parsed["verse"],
                "full_text": full_text,
                "citation_order": len(rows) + 1,
            }
        )
    return rows


def _connect():
    return psycopg2.connect(**DB)


def _mark_failed(conn, dream_id: str) -> None:
    try:
        mark_analysis_failed(conn, dream_id)
    except Exception as exc:
        conn.rollback()
        log_event(
            "analysis_failure_write_failed",
            {"dream_id": dream_id, "error": type(exc).__name__},
        )


def _analyze(conn, dream_id: str, dream_text: str) -> str:
    try:
        content = request_interpretation(dream_text)
        parsed = parse_analysis(content)
        update = build_dream_update(parsed)
    except Exception as exc:
        log_event(
            "analysis_failed",
            {"dream_id": dream_id, "stage": "interpretation", "error": str(exc)[:200]},
        )
        _mark_failed(conn, dream_id)
        return STATUS_FAILED

    try:
        updated = update_dream_analysis(conn, dream_id, update)
    except Exception as exc:
        conn.rollback()
        log_event(
            "analysis_failed",
            {"dream_id": dream_id, "stage": "dream_update", "error": type(exc).__name__},
        )
        _mark_failed(conn, dream_id)
        return STATUS_FAILED

    if not updated:
        log_event("analysis_skipped", {"dream_id": dream_id, "reason": "outcome_already_written"})
        return STATUS_SKIPPED

    status = STATUS_ANALYZED
    rows = build_citation_rows(dream_id, update["bible_refs"], parsed["biblical_references"])
    try:
        insert_citations(conn, rows)
    except Exception as exc:
        conn.rollback()
        status = STATUS_PARTIAL
        log_event(
            "citation_insert_failed",
            {"dream_id": dream_id, "count": len(rows), "error": type(exc).__name__},
        )

    try:
        insert_interaction(
            conn,
            dream_id,
            f"Analyze dream: {dream_text}",
            content,
            OPENAI_MODEL,
            OPENAI_TEMPERATURE,
        )
    except Exception as exc:
        conn.rollback()
        log_event("interaction_log_failed", {"dream_id": dream_id, "error": type(exc).__name__})

    log_event(
        "analysis_completed",
        {
            "dream_id": dream_id,
            "status": status,
            "refs_count": len(update["bible_refs"]),
            "citations_count": len(rows),
            "tags_count": len(update["tags"]),
        },
    )
    return status


def run_analysis_job(
    dream_id: str, dream_text: str, connect: Optional[Callable[[], object]] = None
) -> str:
    """
    Background entry point, scheduled after the dream row exists. Writes
    exactly one outcome to the dream row and never raises.
    """
    start = time.perf_counter()
    try:
        conn = (connect or _connect)()
    except Exception as exc:
        log_event("analysis_failed", {"dream_id": dream_id, "stage": "connect", "error": type(exc).__name__})
        return STATUS_FAILED

    try:
        status = _analyze(conn, dream_id, dream_text)
    except Exception as exc:
        log_event("analysis_job_crashed", {"dream_id": dream_id, "error": type(exc).__name__})
        status = STATUS_FAILED
    finally:
        conn.close()

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_event("analysis_job_done", {"dream_id": dream_id, "status": status, "elapsed_ms": elapsed_ms})
    return status
