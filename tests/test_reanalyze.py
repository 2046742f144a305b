import etl.reanalyze as reanalyze_mod


class FakeConn:
    def close(self):
        return None


def test_reanalyze_runs_pending_dreams(monkeypatch):
    seen = []
    queried = []

    def _pending(_conn, limit, min_age_sec):
        queried.append((limit, min_age_sec))
        return [
            {"id": "dream-1", "original_text": "I flew"},
            {"id": "dream-2", "original_text": "I swam"},
        ][:limit]

    def _job(dream_id, text, connect=None):
        seen.append((dream_id, text))
        return "analyzed" if dream_id == "dream-1" else "skipped"

    monkeypatch.setattr(reanalyze_mod, "find_pending_dreams", _pending)
    monkeypatch.setattr(reanalyze_mod, "run_analysis_job", _job)

    counts = reanalyze_mod.main(limit=5, delay_sec=0, min_age_sec=300, connect=FakeConn)

    assert queried == [(5, 300)]
    assert seen == [("dream-1", "I flew"), ("dream-2", "I swam")]
    assert counts == {"analyzed": 1, "skipped": 1}
