"""CLI entry point for the AI suggestion batch."""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import replace

from ...ai_service.models import BatchTrigger
from .config import BatchConfig
from .factory import build_orchestrator, connect_cache_client
from .scheduler import BatchScheduler

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(description="AI automation suggestion batch")
    p.add_argument("--once", action="store_true", help="run a single batch and exit")
    p.add_argument("--interval-hours", type=float, default=None)
    p.add_argument("--max-concurrent", type=int, default=None)
    args = p.parse_args(argv)

    cfg = BatchConfig.from_env()
    overrides = {}
    if args.interval_hours is not None:
        overrides["interval_hours"] = args.interval_hours
    if args.max_concurrent is not None:
        overrides["max_concurrent"] = max(1, args.max_concurrent)
    if overrides:
        cfg = replace(cfg, **overrides)

    orchestrator = build_orchestrator(redis_client=connect_cache_client(), config=cfg)
    logger.info(
        "AI batch started interval_h=%.1f batch_size=%d max_concurrent=%d workers=%d",
        cfg.interval_hours, cfg.batch_size, cfg.max_concurrent, cfg.workers,
    )

    if args.once:
        record = orchestrator.run_once(BatchTrigger.MANUAL)
        if record is not None:
            logger.info("Batch finished status=%s", record.status.value)
        return

    scheduler = BatchScheduler(orchestrator, cfg.interval_seconds, enabled=cfg.enabled)
    scheduler.start()
    try:
        while True:
            time.sleep(60.0)
    except KeyboardInterrupt:
        logger.info("Stopping scheduler...")
    finally:
        scheduler.stop()
        orchestrator.join(timeout=30.0)


if __name__ == "__main__":
    main()
