import os
import time
from typing import Optional

import psycopg2
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.analysis import run_analysis_job
from api.config import API_TITLE, API_VERSION, DB
from api.dreams import (
    delete_dream,
    fetch_citations,
    fetch_citations_for_reference,
    get_dream,
    insert_dream,
    is_analyzed,
    list_dreams,
)
from api.events import log_event, reset_event_log
from api.jwt_utils import verify_access_token
from api.models import (
    DreamCreateRequest,
    DreamCreateResponse,
    DreamDeleteResponse,
    DreamListResponse,
    RenderedDreamResponse,
    VerseDetail,
    VerseDetailLookupResponse,
    VerseResponse,
)
from api.ref_parser import format_reference, split_reference
from api.verses import annotate_citations, build_verse_lookup

app = FastAPI(title=API_TITLE, version=API_VERSION)

CORS_ALLOW_ALL = os.getenv("CORS_ALLOW_ALL", "1") == "1"
if CORS_ALLOW_ALL:
    allow_origins = ["*"]
else:
    raw_origins = os.getenv(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )
    allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "0") == "1"
ALLOW_LOG_RESET = os.getenv("ALLOW_LOG_RESET", "0") == "1"


@app.on_event("startup")
def _reset_event_log_on_startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")


@app.exception_handler(HTTPException)
def handle_http_exception(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "http_error", "message": str(exc.detail)}},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "validation_error",
                "message": "invalid request",
                "details": exc.errors(),
            }
        },
    )


@app.post("/v1/logs/reset")
def reset_logs():
    if not ALLOW_LOG_RESET:
        raise HTTPException(status_code=403, detail="log reset disabled")
    reset_event_log("client")
    return {"reset": True}


def get_conn():
    conn = psycopg2.connect(**DB)
    try:
        yield conn
    finally:
        conn.close()


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def require_user(request: Request) -> dict:
    token = _get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="auth required")
    payload = verify_access_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="invalid session")
    return {"user_id": payload["sub"], "email": payload.get("email")}


def _load_dream(conn, dream_id: str) -> dict:
    try:
        dream = get_dream(conn, dream_id)
    except psycopg2.DataError:
        conn.rollback()
        raise HTTPException(status_code=404, detail="dream not found")
    if not dream:
        raise HTTPException(status_code=404, detail="dream not found")
    return dream


@app.post("/v1/dreams", response_model=DreamCreateResponse)
def create_dream(
    payload: DreamCreateRequest,
    background_tasks: BackgroundTasks,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    dream_text = payload.dream_text
    if not dream_text.strip():
        raise HTTPException(status_code=400, detail="dream text is required")

    try:
        dream = insert_dream(conn, current_user["user_id"], dream_text)
    except psycopg2.Error as exc:
        conn.rollback()
        log_event(
            "dream_insert_failed",
            {"user_id": current_user["user_id"], "error": type(exc).__name__},
        )
        raise HTTPException(status_code=500, detail="failed to save dream entry")
    if not dream.get("id"):
        raise HTTPException(status_code=500, detail="dream saved but no id was returned")

    background_tasks.add_task(run_analysis_job, dream["id"], dream_text)
    log_event(
        "dream_created",
        {"dream_id": dream["id"], "user_id": current_user["user_id"], "text_len": len(dream_text)},
    )
    return {
        "success": True,
        "message": "Dream recorded successfully and analysis started",
        "id": dream["id"],
    }


@app.get("/v1/dreams", response_model=DreamListResponse)
def list_my_dreams(
    current_user=Depends(require_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn=Depends(get_conn),
):
    dreams = list_dreams(conn, current_user["user_id"], limit, offset)
    log_event("dream_list", {"count": len(dreams), "limit": limit, "offset": offset})
    return {"dreams": dreams}


@app.get("/v1/dreams/{dream_id}", response_model=DreamListResponse)
def get_dream_entry(dream_id: str, conn=Depends(get_conn)):
    dream = _load_dream(conn, dream_id)
    return {"dreams": [dream]}


@app.delete("/v1/dreams/{dream_id}", response_model=DreamDeleteResponse)
def delete_dream_entry(dream_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    dream = _load_dream(conn, dream_id)
    if dream.get("user_id") != current_user["user_id"]:
        raise HTTPException(status_code=403, detail="you can only delete your own dreams")
    try:
        delete_dream(conn, dream_id)
    except psycopg2.Error as exc:
        conn.rollback()
        log_event("dream_delete_failed", {"dream_id": dream_id, "error": type(exc).__name__})
        raise HTTPException(status_code=500, detail="failed to delete dream")
    log_event("dream_deleted", {"dream_id": dream_id})
    return {"success": True, "message": "Dream deleted successfully"}


@app.get("/v1/dreams/{dream_id}/rendered", response_model=RenderedDreamResponse)
def render_dream(dream_id: str, conn=Depends(get_conn)):
    dream = _load_dream(conn, dream_id)
    refs = dream.get("bible_refs") or []
    lookup = build_verse_lookup(refs, fetch_citations(conn, dream_id))
    body = dream.get("formatted_analysis") or dream.get("analysis_summary") or ""
    return {
        "id": dream["id"],
        "analyzed": is_analyzed(dream),
        "segments": annotate_citations(body, refs, lookup),
        "supporting_points": [
            annotate_citations(point, refs, lookup) for point in dream.get("supporting_points") or []
        ],
    }


@app.get("/v1/bible-verses/lookup")
def lookup_verses(
    dream_id: Optional[str] = Query(None, alias="dreamId"),
    detail: bool = Query(False),
    conn=Depends(get_conn),
):
    if not dream_id:
        raise HTTPException(status_code=400, detail="dream id is required")
    start = time.perf_counter()
    dream = _load_dream(conn, dream_id)
    rows = fetch_citations(conn, dream_id)
    refs = dream.get("bible_refs") or []
    lookup = build_verse_lookup(refs, rows)

    sources: dict = {}
    for resolution in lookup.values():
        sources[resolution.source] = sources.get(resolution.source, 0) + 1
    log_event(
        "verse_lookup",
        {
            "dream_id": dream_id,
            "refs_count": len(refs),
            "rows_count": len(rows),
            "sources": sources,
            "elapsed_ms": int((time.perf_counter() - start) * 1000),
        },
    )
    if detail:
        return VerseDetailLookupResponse(
            verses={ref: VerseDetail(**resolution.as_dict()) for ref, resolution in lookup.items()}
        )
    return {ref: resolution.text for ref, resolution in lookup.items()}


@app.get("/v1/bible-verses", response_model=VerseResponse)
def get_verse(reference: str = Query(..., min_length=1), conn=Depends(get_conn)):
    parts = split_reference(reference)
    if not parts:
        raise HTTPException(
            status_code=400,
            detail="invalid reference format, expected Book Chapter:Verse (e.g. Genesis 1:1)",
        )
    rows = fetch_citations_for_reference(conn, *parts)
    resolution = build_verse_lookup([reference], rows)[reference]
    log_event(
        "verse_reference",
        {"reference": format_reference(*parts), "source": resolution.source},
    )
    return {"reference": reference, **resolution.as_dict()}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "9000"))
    uvicorn.run("api.main:app", host="0.0.0.0", port=port, reload=True)
