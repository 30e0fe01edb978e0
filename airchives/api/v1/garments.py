"""
Garments Endpoint

POST   /api/v1/garments       - Upload a garment photo and run intake
GET    /api/v1/garments       - List the owner's garments
GET    /api/v1/garments/{id}  - Garment with its generations and images
DELETE /api/v1/garments/{id}  - Delete a garment and its stored images
"""

import asyncio

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from airchives.api.dependencies import get_intake_orchestrator, get_owner_id
from airchives.core.config import Settings, get_settings
from airchives.core.database import get_session
from airchives.core.logging import LogContext, get_logger
from airchives.core.storage import IStorage, get_storage
from airchives.engines.garment.imaging import detect_color_label, validate_image
from airchives.engines.garment.intake import GarmentIntakeOrchestrator
from airchives.modules.garments.models import Garment
from airchives.modules.garments.repositories import GarmentRepository
from airchives.modules.generations.repositories import GenerationRepository

logger = get_logger(__name__)
router = APIRouter()


@router.post("", status_code=201)
async def upload_garment(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
    storage: IStorage = Depends(get_storage),
    intake: GarmentIntakeOrchestrator = Depends(get_intake_orchestrator),
    config: Settings = Depends(get_settings)
):
    """
    Upload a garment photo.

    The original is stored, then detection and segmentation run concurrently.
    The garment comes back SEGMENTED with a mask, or FAILED when segmentation
    could not produce one.
    """
    image_bytes = await file.read()
    # Pillow decoding is CPU bound; keep it off the event loop
    content_type = await asyncio.to_thread(validate_image, image_bytes, config.MAX_IMAGE_SIZE_BYTES)
    detected_color = await asyncio.to_thread(detect_color_label, image_bytes)

    storage_key = await storage.upload(
        image_bytes,
        filename=file.filename or "garment.png",
        folder="garments",
        content_type=content_type
    )
    image_url = await storage.get_url(storage_key)

    repo = GarmentRepository(session)
    garment = await repo.save(
        Garment(
            owner_id=owner_id,
            original_image_url=image_url,
            original_storage_key=storage_key,
            original_filename=file.filename,
            detected_color=detected_color
        )
    )

    with LogContext(job_id=garment.id, stage="intake"):
        logger.info("garment_uploaded", size_bytes=len(image_bytes), storage_key=storage_key)
        outcome = await intake.process(image_url)
        garment.apply_intake(outcome)
        garment = await repo.save(garment)

    return garment.to_response_dict()


@router.get("")
async def list_garments(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session)
):
    garments = await GarmentRepository(session).list_for_owner(owner_id, limit=limit, offset=offset)
    return {
        "garments": [g.to_response_dict() for g in garments],
        "count": len(garments),
        "limit": limit,
        "offset": offset
    }


@router.get("/{garment_id}")
async def get_garment(
    garment_id: str,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session)
):
    garment = await GarmentRepository(session).get_or_raise(garment_id, owner_id=owner_id)
    generations = await GenerationRepository(session).list_for_garment(garment.id)

    response = garment.to_response_dict()
    response["generations"] = [generation.to_status_dict(images) for generation, images in generations]
    return response


@router.delete("/{garment_id}")
async def delete_garment(
    garment_id: str,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
    storage: IStorage = Depends(get_storage)
):
    repo = GarmentRepository(session)
    garment = await repo.get_or_raise(garment_id, owner_id=owner_id)
    storage_keys = await repo.delete(garment)

    removed = 0
    for key in storage_keys:
        if await storage.delete(key):
            removed += 1

    logger.info("garment_deleted", job_id=garment_id, files_removed=removed)
    return {"id": garment_id, "deleted": True, "files_removed": removed}
