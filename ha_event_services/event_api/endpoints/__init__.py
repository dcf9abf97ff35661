from .batch import router as batch_router
from .health import router as health_router
from .ingest import router as ingest_router
from .metrics import router as metrics_router

__all__ = ["batch_router", "health_router", "ingest_router", "metrics_router"]
