import pytest

import api.events as events_mod


@pytest.fixture(autouse=True)
def event_log(tmp_path, monkeypatch):
    path = tmp_path / "events.log"
    monkeypatch.setattr(events_mod, "EVENT_LOG_PATH", str(path))
    return path
