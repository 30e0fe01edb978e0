"""
Celery Tasks for the Generation Pipeline

Each task runs the async orchestrator on its own event loop with a NullPool
engine. The orchestrator records failures on the generation itself; the task
only logs what could not be recorded.
"""

import asyncio
from typing import Dict, Any

from airchives.core.celery_app import celery_app
from airchives.core.database import create_worker_session_maker
from airchives.core.logging import get_logger, set_job_context, clear_job_context
from airchives.pipeline.orchestrator import run_generation_job

logger = get_logger(__name__)


def run_generation_sync(generation_id: str) -> Dict[str, Any]:
    """Run one generation to a terminal status on a fresh event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    worker_engine, session_maker = create_worker_session_maker()
    try:
        generation = loop.run_until_complete(run_generation_job(generation_id, session_maker))
    finally:
        loop.run_until_complete(worker_engine.dispose())
        loop.close()
        asyncio.set_event_loop(None)

    if generation is None:
        return {"generation_id": generation_id, "status": "skipped"}
    return {
        "generation_id": generation_id,
        "status": generation.status,
        "error_message": generation.error_message,
    }


@celery_app.task(
    bind=True,
    name="airchives.pipeline.tasks.run_generation",
    max_retries=0,
    acks_late=True
)
def run_generation(self, generation_id: str) -> Dict[str, Any]:
    """Celery task wrapping the generation orchestrator."""
    set_job_context(generation_id, "generation")
    try:
        logger.info("task_generation_started", task_id=self.request.id)
        result = run_generation_sync(generation_id)
        logger.info("task_generation_finished", status=result["status"])
        return result
    except Exception as e:
        # Only reachable when the failure could not be written to the record
        logger.error(
            "task_generation_crashed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True
        )
        raise
    finally:
        clear_job_context()
