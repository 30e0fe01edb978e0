"""
Generation Dispatch

Hands a PENDING generation to background execution and returns immediately.

- CeleryDispatcher: queues the run_generation task (default)
- LocalDispatcher: runs the orchestrator as an asyncio task in this process

Both paths end in GenerationOrchestrator.run(), which records any failure on
the generation. LocalDispatcher keeps a reference to every task and logs
anything that still escapes.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional, Set

from sqlalchemy.orm import sessionmaker

from airchives.core.config import settings
from airchives.core.database import async_session_maker
from airchives.core.logging import get_logger
from airchives.pipeline.orchestrator import run_generation_job

logger = get_logger(__name__)


class GenerationDispatcher(ABC):
    @abstractmethod
    def dispatch(self, generation_id: str) -> Optional[str]:
        """Schedule the generation. Returns a task id when the backend has one."""


class CeleryDispatcher(GenerationDispatcher):
    def dispatch(self, generation_id: str) -> Optional[str]:
        from airchives.pipeline.tasks import run_generation

        task = run_generation.delay(generation_id)
        logger.info("generation_dispatched", job_id=generation_id, executor="celery", task_id=task.id)
        return task.id


class LocalDispatcher(GenerationDispatcher):
    def __init__(self, session_maker: sessionmaker = async_session_maker, **orchestrator_options: Any):
        self.session_maker = session_maker
        self.orchestrator_options = orchestrator_options
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, generation_id: str) -> Optional[str]:
        task = asyncio.get_running_loop().create_task(
            run_generation_job(generation_id, self.session_maker, **self.orchestrator_options),
            name=f"generation-{generation_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("generation_dispatched", job_id=generation_id, executor="local")
        return task.get_name()

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("generation_task_cancelled", task=task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "generation_task_crashed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
                exc_info=error
            )

    async def drain(self):
        """Wait for in-flight generations (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_dispatcher: Optional[GenerationDispatcher] = None


def get_dispatcher() -> GenerationDispatcher:
    """Process-wide dispatcher selected by PIPELINE_EXECUTOR."""
    global _dispatcher
    if _dispatcher is None:
        if settings.PIPELINE_EXECUTOR.lower() == "local":
            _dispatcher = LocalDispatcher()
        else:
            _dispatcher = CeleryDispatcher()
    return _dispatcher
