import requests

from api.client import DreamClient


class FakeResponse:
    def __init__(self, data):
        self._data = data

    def raise_for_status(self):
        return None

    def json(self):
        return self._data


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, headers))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return FakeResponse(item)


def _dreams(**fields):
    dream = {"id": "dream-1", "original_text": "I flew", "dream_summary": None}
    dream.update(fields)
    return {"dreams": [dream]}


def test_wait_for_analysis_returns_once_analyzed():
    session = FakeSession([_dreams(), _dreams(), _dreams(dream_summary="Renewal.")])
    client = DreamClient("token", base_url="http://api.test", session=session)

    dream = client.wait_for_analysis("dream-1", max_attempts=5, interval_ms=0)

    assert dream["dream_summary"] == "Renewal."
    assert len(session.calls) == 3
    assert session.calls[0][2]["Authorization"] == "Bearer token"


def test_wait_for_analysis_stops_after_max_attempts(event_log):
    session = FakeSession([_dreams()])
    client = DreamClient(base_url="http://api.test", session=session)

    dream = client.wait_for_analysis("dream-1", max_attempts=3, interval_ms=0)

    assert dream["id"] == "dream-1"
    assert dream["dream_summary"] is None
    assert len(session.calls) == 3
    assert "poll_exhausted" in event_log.read_text(encoding="utf-8")


def test_wait_for_analysis_retries_request_errors():
    session = FakeSession([requests.ConnectionError("down"), _dreams(analysis_summary="Done.")])
    client = DreamClient(base_url="http://api.test", session=session)

    dream = client.wait_for_analysis("dream-1", max_attempts=3, interval_ms=0)

    assert dream["analysis_summary"] == "Done."
    assert len(session.calls) == 2


def test_lookup_verses_builds_resolutions():
    session = FakeSession(
        [{"verses": {"John 3:16": {"text": "For God so loved", "source": "fallback", "is_fallback": True}}}]
    )
    client = DreamClient(base_url="http://api.test", session=session)

    lookup = client.lookup_verses("dream-1")

    assert lookup["John 3:16"].source == "fallback"
    assert lookup["John 3:16"].is_fallback is True
    assert session.calls[0][1] == {"dreamId": "dream-1", "detail": "true"}


def test_render_analysis_uses_lookup():
    session = FakeSession([{"verses": {}}])
    client = DreamClient(base_url="http://api.test", session=session)
    dream = {"bible_refs": ["John 3:16"], "formatted_analysis": "Love (John 3:16)"}

    segments = client.render_analysis(dream, client.lookup_verses("dream-1"))

    assert segments[1]["reference"] == "John 3:16"
    assert segments[1]["source"] == "fallback"
