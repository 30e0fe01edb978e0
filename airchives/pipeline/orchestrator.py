"""
Generation Orchestrator

Drives one Generation through PENDING -> PROCESSING -> COMPLETED | FAILED:

1. Claim the record: a single conditional UPDATE flips PENDING to PROCESSING,
   so a redelivered or duplicated task finds nothing to claim and skips
2. Resolve the active provider (configuration errors fail before any I/O)
3. Load garment and target model, build and persist the prompt
4. Synthesize every pose concurrently through the provider
5. Download, store and record each result as an OutputImage
6. Mark COMPLETED, or FAILED with the error message

run() is the error boundary of the background path: any exception raised in
steps 2-6 ends as a persisted FAILED record. Cancellation of the running task
is recorded as FAILED too, then re-raised. Each phase commits in its own
session, so a status read always sees one of the four states.
"""

import asyncio
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import sessionmaker

from airchives.core.config import Settings, settings as default_settings
from airchives.core.exceptions import AirchivesError, GarmentNotSegmentedError, PipelineStageError
from airchives.core.logging import LogContext, get_logger, set_stage
from airchives.core.metrics import (
    record_generation_finished,
    record_generation_started,
    track_stage_latency,
)
from airchives.core.storage import IStorage, get_storage
from airchives.engines.providers.base import SynthesisProvider, SynthesisRequest, pose_for_index
from airchives.engines.providers.factory import resolve_provider
from airchives.modules.catalog.repositories import VirtualModelRepository
from airchives.modules.garments.repositories import GarmentRepository
from airchives.modules.generations.models import Generation, OutputImage
from airchives.modules.generations.repositories import GenerationRepository
from airchives.pipeline.prompts import ModelAttributes, build_prompt
from airchives.pipeline.publisher import ArtifactPublisher

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Generation cancelled"


class GenerationOrchestrator:
    def __init__(
        self,
        session_maker: sessionmaker,
        storage: Optional[IStorage] = None,
        config: Settings = default_settings,
        provider_factory: Optional[Callable[[], SynthesisProvider]] = None,
        publisher: Optional[ArtifactPublisher] = None
    ):
        self.session_maker = session_maker
        self.config = config
        self.provider_factory = provider_factory or (lambda: resolve_provider(config))
        self.publisher = publisher or ArtifactPublisher(storage or get_storage(), session_maker, config)

    async def run(self, generation_id: str) -> Optional[Generation]:
        """Process one pending generation. Returns the final record, or None if skipped."""
        with LogContext(job_id=generation_id, stage="generation"):
            generation = await self._claim(generation_id)
            if generation is None:
                return None

            started = time.time()
            record_generation_started()
            provider: Optional[SynthesisProvider] = None
            try:
                set_stage("configuration")
                provider = self.provider_factory()
                generation = await self._record_provider(generation, provider.name)

                await self._execute(generation, provider)
                generation = await self._mark_completed(generation_id)
            except asyncio.CancelledError:
                # The FAILED write must land even though this task is being torn down
                generation = await asyncio.shield(self._mark_cancelled(generation_id))
                record_generation_finished(generation.status, time.time() - started)
                raise
            except Exception as e:
                generation = await self._mark_failed(generation_id, e)
            finally:
                if provider is not None:
                    await provider.close()

            record_generation_finished(generation.status, time.time() - started)
            logger.info(
                "generation_finished",
                status=generation.status,
                duration_seconds=round(time.time() - started, 2),
                error=generation.error_message
            )
            return generation

    # =========================================================================
    # Phases
    # =========================================================================

    async def _claim(self, generation_id: str) -> Optional[Generation]:
        async with self.session_maker() as session:
            repo = GenerationRepository(session)
            claimed = await repo.claim_pending(generation_id)
            generation = await repo.get(generation_id)

        if generation is None:
            logger.error("generation_not_found")
            return None
        if not claimed:
            # Another delivery of the same task already owns this generation
            logger.warning("generation_already_claimed", status=generation.status)
            return None

        logger.info("generation_started", batch_size=generation.batch_size)
        return generation

    async def _record_provider(self, generation: Generation, provider_name: str) -> Generation:
        async with self.session_maker() as session:
            await GenerationRepository(session).set_provider(generation.id, provider_name)
        generation.provider = provider_name
        logger.info("provider_selected", provider=provider_name)
        return generation

    async def _execute(self, generation: Generation, provider: SynthesisProvider) -> List[OutputImage]:
        set_stage("prompt")
        async with self.session_maker() as session:
            garment = await GarmentRepository(session).get_or_raise(generation.garment_id)
            if not garment.is_ready_for_generation:
                raise GarmentNotSegmentedError(garment.id)

            model = await VirtualModelRepository(session).get_or_raise(generation.target_model_id)
            prompt = build_prompt(
                ModelAttributes(model.name, model.body_type, model.ethnicity, tuple(model.style_tags or ())),
                generation.background,
                custom_prompt=generation.custom_prompt,
                negative_prompt=generation.negative_prompt
            )

            repo = GenerationRepository(session)
            record = await repo.get_or_raise(generation.id)
            record.prompt_used = prompt.prompt
            record.negative_prompt = prompt.negative_prompt
            await repo.save(record)

        requests = [
            SynthesisRequest(
                prompt=prompt.prompt,
                negative_prompt=prompt.negative_prompt,
                image_url=garment.original_image_url,
                mask_url=garment.mask_image_url,
                pose=pose_for_index(index)
            )
            for index in range(generation.batch_size)
        ]

        set_stage("synthesis")
        with track_stage_latency("synthesis"):
            outcomes = await asyncio.gather(
                *(provider.generate(request) for request in requests),
                return_exceptions=True
            )
        results = self._collect(outcomes, range(len(requests)), "synthesis")

        set_stage("publish")
        with track_stage_latency("publish"):
            published = await asyncio.gather(
                *(self.publisher.publish(generation.id, result, index) for index, result in results),
                return_exceptions=True
            )
        images = self._collect(published, [index for index, _ in results], "publish")
        return [image for _, image in images]

    async def _mark_completed(self, generation_id: str) -> Generation:
        set_stage("finalize")
        async with self.session_maker() as session:
            repo = GenerationRepository(session)
            generation = await repo.get_or_raise(generation_id)
            if not await repo.images_for(generation_id):
                raise PipelineStageError("Generation produced no images", stage="finalize", job_id=generation_id)
            generation.mark_completed()
            return await repo.save(generation)

    async def _mark_failed(self, generation_id: str, error: Exception) -> Generation:
        message = str(error) or type(error).__name__
        logger.error(
            "generation_failed",
            error=message,
            error_type=type(error).__name__,
            exc_info=not isinstance(error, AirchivesError)
        )
        return await self._record_failure(generation_id, message)

    async def _mark_cancelled(self, generation_id: str) -> Generation:
        logger.warning("generation_cancelled")
        return await self._record_failure(generation_id, CANCELLED_MESSAGE)

    async def _record_failure(self, generation_id: str, message: str) -> Generation:
        async with self.session_maker() as session:
            repo = GenerationRepository(session)
            generation = await repo.get_or_raise(generation_id)
            if generation.is_terminal:
                logger.warning("generation_already_terminal", status=generation.status)
                return generation
            generation.mark_failed(message)
            return await repo.save(generation)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _collect(self, outcomes: Sequence[Any], indices: Sequence[int], phase: str) -> List[Tuple[int, Any]]:
        """
        Split gathered outcomes into (pose index, value) successes.

        All-or-nothing by default: the first failure in pose order is raised
        once every in-flight call has settled. With ALLOW_PARTIAL_BATCH the
        failures are dropped as long as one pose succeeded.
        """
        paired = list(zip(indices, outcomes))
        successes = [(i, o) for i, o in paired if not isinstance(o, BaseException)]
        failures = [(i, o) for i, o in paired if isinstance(o, BaseException)]

        if not failures:
            return successes

        for index, error in failures:
            logger.warning(
                "pose_failed",
                phase=phase,
                pose=pose_for_index(index),
                error=str(error),
                error_type=type(error).__name__
            )

        if self.config.ALLOW_PARTIAL_BATCH and successes:
            logger.info("partial_batch_accepted", phase=phase, succeeded=len(successes), failed=len(failures))
            return successes

        raise failures[0][1]


async def run_generation_job(
    generation_id: str,
    session_maker: sessionmaker,
    **kwargs
) -> Optional[Generation]:
    """Entry point shared by the Celery task and the in-process dispatcher."""
    return await GenerationOrchestrator(session_maker, **kwargs).run(generation_id)
