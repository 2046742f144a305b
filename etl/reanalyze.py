# etl/reanalyze.py
import time

import psycopg2

from api.analysis import STATUS_ANALYZED, run_analysis_job
from api.dreams import find_pending_dreams
from etl.config import DB, REANALYZE_DELAY_SEC, REANALYZE_LIMIT, REANALYZE_MIN_AGE_SEC


def get_conn(cfg):
    return psycopg2.connect(**cfg)


def main(
    limit: int = REANALYZE_LIMIT,
    delay_sec: float = REANALYZE_DELAY_SEC,
    min_age_sec: int = REANALYZE_MIN_AGE_SEC,
    connect=None,
) -> dict:
    """Re-run the analysis job for dreams that never received any analysis."""
    connect = connect or (lambda: get_conn(DB))
    conn = connect()
    try:
        pending = find_pending_dreams(conn, limit, min_age_sec)
    finally:
        conn.close()

    counts: dict = {}
    for i, dream in enumerate(pending):
        if i and delay_sec:
            time.sleep(delay_sec)
        status = run_analysis_job(dream["id"], dream["original_text"], connect=connect)
        counts[status] = counts.get(status, 0) + 1
        tag = "OK" if status == STATUS_ANALYZED else "WARN"
        print(f"{tag} dream={dream['id']} status={status}", flush=True)

    print(f"DONE pending={len(pending)} results={counts}")
    return counts


if __name__ == "__main__":
    main()
