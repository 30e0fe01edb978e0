"""
Generation Endpoint - Background Dispatch

POST /api/v1/generate       - Validate, create a PENDING generation, dispatch
GET  /api/v1/generate/{id}  - Status with progress and stored images
GET  /api/v1/generate       - Owner's generations with image counts

The request never waits for synthesis; the background worker moves the
generation through PROCESSING to COMPLETED or FAILED.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from airchives.api.dependencies import get_dispatcher, get_owner_id
from airchives.core.config import Settings, get_settings
from airchives.core.database import get_session
from airchives.core.exceptions import (
    GarmentNotSegmentedError,
    GenerationNotFoundError,
    PipelineStageError,
    ProviderConfigurationError,
)
from airchives.core.logging import LogContext, get_logger
from airchives.engines.providers.factory import providers_configured
from airchives.modules.catalog.repositories import VirtualModelRepository
from airchives.modules.garments.repositories import GarmentRepository
from airchives.modules.generations.models import (
    AUTO_PROMPT_PLACEHOLDER,
    Background,
    Generation,
)
from airchives.modules.generations.repositories import GenerationRepository
from airchives.pipeline.dispatch import GenerationDispatcher

logger = get_logger(__name__)
router = APIRouter()

MIN_REQUEST_POSES = 1
MAX_REQUEST_POSES = 3


# =============================================================================
# Request/Response Schemas
# =============================================================================

class GenerateRequest(BaseModel):
    """Request for a batch of model photos of one garment."""
    garment_id: str = Field(..., min_length=1)
    target_model_id: str = Field(..., min_length=1)
    background: Background = Background.WHITE
    poses: int = Field(default=MAX_REQUEST_POSES, description="Clamped into 1-3")
    prompt: Optional[str] = Field(default=None, max_length=2000)
    negative_prompt: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("poses")
    @classmethod
    def clamp_poses(cls, v: int) -> int:
        return max(MIN_REQUEST_POSES, min(MAX_REQUEST_POSES, v))


class GenerateResponse(BaseModel):
    generation_id: str
    status: str
    estimated_time: int


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=GenerateResponse, status_code=202)
async def create_generation(
    request: GenerateRequest,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
    dispatcher: GenerationDispatcher = Depends(get_dispatcher),
    config: Settings = Depends(get_settings)
):
    """
    Request a generation.

    Validation happens before anything is written: the garment must exist and
    be segmented, the model must exist and a provider must be configured.
    """
    if not providers_configured(config):
        raise ProviderConfigurationError(
            "No inference provider configured: set FAL_API_KEY or REPLICATE_API_TOKEN",
            stage="configuration"
        )

    garment = await GarmentRepository(session).get_or_raise(request.garment_id, owner_id=owner_id)
    if not garment.is_ready_for_generation:
        raise GarmentNotSegmentedError(garment.id)
    await VirtualModelRepository(session).get_or_raise(request.target_model_id)

    repo = GenerationRepository(session)
    generation = await repo.create(
        Generation(
            garment_id=garment.id,
            target_model_id=request.target_model_id,
            background=request.background.value,
            custom_prompt=request.prompt,
            prompt_used=request.prompt or AUTO_PROMPT_PLACEHOLDER,
            negative_prompt=request.negative_prompt,
            batch_size=request.poses
        )
    )

    with LogContext(job_id=generation.id, stage="dispatch"):
        logger.info(
            "generation_requested",
            garment_id=garment.id,
            target_model_id=request.target_model_id,
            background=request.background.value,
            poses=request.poses
        )
        try:
            task_id = dispatcher.dispatch(generation.id)
        except Exception as e:
            generation.mark_failed(f"Failed to dispatch generation: {e}")
            await repo.save(generation)
            raise PipelineStageError(
                "Generation could not be queued",
                stage="dispatch",
                job_id=generation.id
            ) from e

        if task_id:
            await repo.set_task_id(generation.id, task_id)

    return GenerateResponse(
        generation_id=generation.id,
        status="pending",
        estimated_time=config.ESTIMATED_GENERATION_SECONDS
    )


@router.get("/{generation_id}")
async def get_generation(
    generation_id: str,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session)
):
    repo = GenerationRepository(session)
    generation, images = await repo.get_with_images(generation_id)
    if await repo.get_owner_id(generation) != owner_id:
        raise GenerationNotFoundError(generation_id)
    return generation.to_status_dict(images)


@router.get("")
async def list_generations(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session)
):
    rows = await GenerationRepository(session).list_for_owner(owner_id, limit=limit, offset=offset)

    generations = []
    for generation, image_count in rows:
        summary = generation.to_status_dict([])
        del summary["images"]
        summary["image_count"] = image_count
        generations.append(summary)

    return {"generations": generations, "count": len(generations), "limit": limit, "offset": offset}
