"""Manual trigger and status of the AI suggestion batch."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...jobs.batch.factory import get_orchestrator
from ...jobs.batch.runner import BatchOrchestrator

router = APIRouter(prefix="/api/ai/batch", tags=["ai-batch"])


@router.post("/trigger")
def trigger_batch(orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    """202 with the batch id, or 409 when every batch permit is taken."""
    result = orchestrator.trigger_manual()
    status_code = 202 if result.accepted else 409
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.get("/status")
def batch_status(orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    return orchestrator.status()
