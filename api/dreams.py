from typing import List, Optional

from psycopg2.extras import Json, RealDictCursor, execute_values

ANALYSIS_FAILED_SUMMARY = "Analysis could not be completed at this time."

DREAM_COLUMNS = """
    id, user_id, original_text, title, dream_summary, analysis_summary,
    topic_sentence, supporting_points, conclusion_sentence, formatted_analysis,
    tags, bible_refs, created_at
"""

INSERT_CITATIONS_SQL = """
INSERT INTO bible_citations
(dream_entry_id, bible_book, chapter, verse, full_text, citation_order)
VALUES %s
"""


def build_title(dream_text: str) -> str:
    if len(dream_text) <= 10:
        return f"Dream: {dream_text}"
    if len(dream_text) <= 50:
        return dream_text
    truncated = dream_text[:50]
    last_space = truncated.rfind(" ")
    if last_space > 30:
        return truncated[:last_space] + "..."
    return truncated + "..."


def _serialize_dream(row: dict) -> dict:
    dream = dict(row)
    dream["id"] = str(dream["id"])
    if dream.get("user_id") is not None:
        dream["user_id"] = str(dream["user_id"])
    created_at = dream.get("created_at")
    if created_at is not None and hasattr(created_at, "isoformat"):
        dream["created_at"] = created_at.isoformat()
    return dream


def insert_dream(conn, user_id: str, dream_text: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO dream_entries (user_id, original_text, title)
            VALUES (%s, %s, %s)
            RETURNING {DREAM_COLUMNS}
            """,
            (user_id, dream_text, build_title(dream_text)),
        )
        row = cur.fetchone()
    conn.commit()
    return _serialize_dream(row)


def get_dream(conn, dream_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {DREAM_COLUMNS} FROM dream_entries WHERE id = %s",
            (dream_id,),
        )
        row = cur.fetchone()
    return _serialize_dream(row) if row else None


def list_dreams(conn, user_id: str, limit: int, offset: int) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {DREAM_COLUMNS}
            FROM dream_entries
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, limit, offset),
        )
        rows = cur.fetchall()
    return [_serialize_dream(row) for row in rows]


def find_pending_dreams(conn, limit: int, min_age_sec: int = 600) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, original_text
            FROM dream_entries
            WHERE dream_summary IS NULL
              AND analysis_summary IS NULL
              AND (supporting_points IS NULL OR cardinality(supporting_points) = 0)
              AND created_at < now() - make_interval(secs => %s)
            ORDER BY created_at
            LIMIT %s
            """,
            (min_age_sec, limit),
        )
        rows = cur.fetchall()
    return [{"id": str(row["id"]), "original_text": row["original_text"]} for row in rows]


def update_dream_analysis(conn, dream_id: str, update: dict) -> int:
    """Writes only while the dream has no outcome yet; returns the rows updated."""
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE dream_entries
            SET dream_summary = %s,
                analysis_summary = %s,
                topic_sentence = %s,
                supporting_points = %s,
                conclusion_sentence = %s,
                formatted_analysis = %s,
                tags = %s,
                bible_refs = %s,
                raw_analysis = %s
            WHERE id = %s
              AND dream_summary IS NULL
              AND analysis_summary IS NULL
            """,
            (
                update["dream_summary"],
                update["analysis_summary"],
                update["topic_sentence"],
                list(update["supporting_points"]),
                update["conclusion_sentence"],
                update["formatted_analysis"],
                list(update["tags"]),
                list(update["bible_refs"]),
                Json(update.get("raw_analysis") or {}),
                dream_id,
            ),
        )
        updated = cur.rowcount
    conn.commit()
    return updated


def mark_analysis_failed(conn, dream_id: str) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE dream_entries SET dream_summary = %s
            WHERE id = %s
              AND dream_summary IS NULL
              AND analysis_summary IS NULL
            """,
            (ANALYSIS_FAILED_SUMMARY, dream_id),
        )
        updated = cur.rowcount
    conn.commit()
    return updated


def insert_citations(conn, rows: List[dict]) -> int:
    if not rows:
        return 0
    values = [
        (
            row["dream_entry_id"],
            row["bible_book"],
            row["chapter"],
            row["verse"],
            row["full_text"],
            row["citation_order"],
        )
        for row in rows
    ]
    with conn.cursor() as cur:
        execute_values(cur, INSERT_CITATIONS_SQL, values)
    conn.commit()
    return len(values)


def fetch_citations(conn, dream_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT bible_book, chapter, verse, full_text, citation_order
            FROM bible_citations
            WHERE dream_entry_id = %s
            ORDER BY citation_order
            """,
            (dream_id,),
        )
        return cur.fetchall()


def fetch_citations_for_reference(conn, book: str, chapter: int, verse: int) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT bible_book, chapter, verse, full_text, citation_order
            FROM bible_citations
            WHERE bible_book = %s AND chapter = %s AND verse = %s
            ORDER BY created_at DESC
            LIMIT 5
            """,
            (book, chapter, verse),
        )
        return cur.fetchall()


def insert_interaction(
    conn, dream_id: str, prompt: str, response: str, model: str, temperature: float
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO chatgpt_interactions
            (dream_entry_id, prompt, response, model, temperature)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (dream_id, prompt, response, model, temperature),
        )
    conn.commit()


def delete_dream(conn, dream_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute("DELETE FROM bible_citations WHERE dream_entry_id = %s", (dream_id,))
        cur.execute("DELETE FROM chatgpt_interactions WHERE dream_entry_id = %s", (dream_id,))
        cur.execute("DELETE FROM dream_entries WHERE id = %s", (dream_id,))
        deleted = cur.rowcount > 0
    conn.commit()
    return deleted


def is_analyzed(dream: Optional[dict]) -> bool:
    if not dream:
        return False
    return bool(
        dream.get("dream_summary")
        or dream.get("analysis_summary")
        or dream.get("supporting_points")
    )
