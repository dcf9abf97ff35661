"""Processing statistics of the event pipeline."""

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..metrics import EventMetricsService, get_event_metrics

router = APIRouter(prefix="/api/events", tags=["metrics"])


@router.get("/metrics")
def processing_metrics(service: EventMetricsService = Depends(get_event_metrics)):
    """``{totalEventsProcessed, filterRate, avgProcessingTime, ...}``"""
    return service.get_processing_stats().to_dict()


@router.get("/metrics/prometheus")
def prometheus_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
