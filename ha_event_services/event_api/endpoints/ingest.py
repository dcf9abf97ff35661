"""HTTP entry for raw hub events."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..pipeline import EventIngestionPipeline
from ..wiring import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["ingest"])


@router.post("/ingest")
async def ingest_event(
    request: Request,
    connection_id: str = Query(..., min_length=1, max_length=64),
    pipeline: EventIngestionPipeline = Depends(get_pipeline),
):
    raw = await request.body()
    result = pipeline.ingest(raw, connection_id)
    if not result.accepted:
        raise HTTPException(status_code=422, detail="malformed event payload")

    decision = result.decision
    return {
        "accepted": True,
        "kept": decision.kept,
        "published": result.published,
        "ruleId": decision.rule_id,
    }
