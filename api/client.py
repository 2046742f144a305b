import os
from typing import Dict, List, Optional

import requests
from tenacity import RetryError, Retrying, retry_if_exception_type, retry_if_result, stop_after_attempt, wait_fixed

from api.config import POLL_INTERVAL_MS, POLL_MAX_ATTEMPTS
from api.dreams import is_analyzed
from api.events import log_event
from api.verses import VerseResolution, annotate_citations

API_BASE_URL = os.getenv("DREAM_API_BASE_URL", "http://localhost:9000")
CLIENT_TIMEOUT_SEC = float(os.getenv("DREAM_CLIENT_TIMEOUT_SEC", "20"))


class DreamClient:
    def __init__(self, access_token: str | None = None, base_url: str = API_BASE_URL, session=None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.headers = {"Cache-Control": "no-cache, no-store, must-revalidate"}
        if access_token:
            self.headers["Authorization"] = f"Bearer {access_token}"

    def _get(self, path: str, params: dict | None = None) -> dict:
        res = self.session.get(
            f"{self.base_url}{path}", params=params, headers=self.headers, timeout=CLIENT_TIMEOUT_SEC
        )
        res.raise_for_status()
        return res.json()

    def submit_dream(self, dream_text: str) -> str:
        res = self.session.post(
            f"{self.base_url}/v1/dreams",
            json={"dream_text": dream_text},
            headers=self.headers,
            timeout=CLIENT_TIMEOUT_SEC,
        )
        res.raise_for_status()
        return res.json()["id"]

    def get_dream(self, dream_id: str) -> Optional[dict]:
        dreams = self._get(f"/v1/dreams/{dream_id}").get("dreams") or []
        return dreams[0] if dreams else None

    def lookup_verses(self, dream_id: str) -> Dict[str, VerseResolution]:
        data = self._get("/v1/bible-verses/lookup", {"dreamId": dream_id, "detail": "true"})
        return {
            ref: VerseResolution(item["text"], item["source"], bool(item.get("is_fallback")))
            for ref, item in (data.get("verses") or {}).items()
        }

    def wait_for_analysis(
        self,
        dream_id: str,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        interval_ms: int = POLL_INTERVAL_MS,
    ) -> Optional[dict]:
        """
        Poll the dream until any analysis field is present or max_attempts is
        spent. Returns the last dream observed, which is unanalyzed when the
        bound was hit.
        """
        last_seen: Dict[str, Optional[dict]] = {"dream": None}

        def _attempt() -> Optional[dict]:
            dream = self.get_dream(dream_id)
            if dream is not None:
                last_seen["dream"] = dream
            return dream

        retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(interval_ms / 1000.0),
            retry=retry_if_exception_type(requests.RequestException)
            | retry_if_result(lambda dream: not is_analyzed(dream)),
        )
        try:
            dream = retrying(_attempt)
        except RetryError:
            log_event("poll_exhausted", {"dream_id": dream_id, "attempts": max_attempts})
            return last_seen["dream"]
        return dream

    def render_analysis(self, dream: dict, lookup: Dict[str, VerseResolution]) -> List[dict]:
        refs = dream.get("bible_refs") or []
        body = dream.get("formatted_analysis") or dream.get("analysis_summary") or ""
        return annotate_citations(body, refs, lookup)
