from __future__ import annotations

import logging
from datetime import date

from fastapi import FastAPI
from pydantic import BaseModel, Field

from memai.core.digest_pipeline import DigestBatchError, DigestGenerationError, generate_yesterdays_digests
from memai.core.pipeline import Pipeline, build_pipeline
from memai.core.settings import Settings
from memai.core.storage import get_db, init_db

logger = logging.getLogger(__name__)

app = FastAPI(title="memai")

_pipeline: Pipeline | None = None


def get_pipeline() -> Pipeline:
    assert _pipeline is not None, "Pipeline not initialized"
    return _pipeline


@app.on_event("startup")
def _startup() -> None:
    global _pipeline
    logging.basicConfig(level=logging.INFO)
    init_db()
    _pipeline = build_pipeline(get_db(), Settings.from_env())


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _pipeline is not None:
        await _pipeline.close()


@app.get("/health")
def health():
    s = Settings.from_env()
    return {"status": "ok", "env": s.app_env}


@app.get("/api/bookmarks/{bookmark_id}/transcription")
def api_transcription(bookmark_id: int):
    row = get_db().get_transcription(bookmark_id)
    if not row:
        return {"error": "Transcription not found"}
    return row.to_dict()


@app.get("/api/bookmarks/{bookmark_id}/web-content")
def api_web_content(bookmark_id: int, include_raw: bool = False):
    row = get_db().get_web_content(bookmark_id)
    if not row:
        return {"error": "Web content not found"}
    return row.to_dict(include_raw=include_raw)


@app.get("/api/digests")
def api_digests(owner_id: str | None = None, limit: int = 20, offset: int = 0):
    """List digests for an owner (or the global digest), newest first."""
    digests, total = get_db().list_digests(owner_id, limit=min(limit, 100), offset=offset)
    return {"digests": [d.to_dict() for d in digests], "total": total, "limit": limit, "offset": offset}


@app.get("/api/digests/{digest_date}")
def api_digest(digest_date: date, owner_id: str | None = None):
    digest = get_db().get_digest(digest_date, owner_id)
    if not digest:
        return {"error": "Digest not found"}
    return digest.to_dict()


class DigestTrigger(BaseModel):
    digest_date: date | None = Field(default=None, alias="date")
    owner: str | None = None
    force_regenerate: bool = False


@app.post("/api/digests/generate")
async def api_digest_generate(body: DigestTrigger):
    """Manual (re)generation for one owner, or for every owner when none is given."""
    aggregator = get_pipeline().digests
    try:
        return await aggregator.trigger(body.digest_date, body.owner, body.force_regenerate)
    except DigestGenerationError as e:
        return {"error": str(e)}
    except DigestBatchError as e:
        return {"error": str(e), **e.report}


@app.post("/api/digests/generate-yesterday")
async def api_digest_generate_yesterday():
    """Cron target: yesterday's digest for every owner."""
    try:
        return await generate_yesterdays_digests(get_pipeline().digests)
    except DigestBatchError as e:
        return {"error": str(e), **e.report}
