"""
Output Image Endpoint

Consumer-facing counters on generated images. The pipeline never touches these.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from airchives.api.dependencies import get_owner_id
from airchives.core.database import get_session
from airchives.core.exceptions import OutputImageNotFoundError
from airchives.modules.generations.models import OutputImage
from airchives.modules.generations.repositories import GenerationRepository

router = APIRouter()


async def _owned_image(repo: GenerationRepository, image_id: str, owner_id: str) -> OutputImage:
    image = await repo.get_image_or_raise(image_id)
    generation = await repo.get_or_raise(image.generation_id)
    if await repo.get_owner_id(generation) != owner_id:
        raise OutputImageNotFoundError(image_id)
    return image


@router.post("/{image_id}/favorite")
async def toggle_favorite(
    image_id: str,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session)
):
    repo = GenerationRepository(session)
    image = await _owned_image(repo, image_id, owner_id)
    image.is_favorite = not image.is_favorite
    image = await repo.save_image(image)
    return image.to_response_dict()


@router.post("/{image_id}/download")
async def record_download(
    image_id: str,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session)
):
    """Count a download and hand back the image location."""
    repo = GenerationRepository(session)
    image = await _owned_image(repo, image_id, owner_id)
    image.download_count += 1
    image = await repo.save_image(image)
    return {"id": image.id, "image_url": image.image_url, "download_count": image.download_count}
