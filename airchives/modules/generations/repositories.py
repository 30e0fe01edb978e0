"""
Generation Repository

Persists generation status transitions and their output images. Each phase of
the background worker commits through here so concurrent readers only ever
observe one of the four generation states.
"""

from datetime import datetime
from typing import Optional, List, Dict, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from airchives.core.database import commit_or_raise
from airchives.core.exceptions import (
    GenerationNotFoundError,
    OutputImageNotFoundError,
    ValidationError,
)
from airchives.modules.garments.models import Garment
from airchives.modules.generations.models import (
    Generation,
    GenerationStatus,
    OutputImage,
    MIN_BATCH_SIZE,
    MAX_BATCH_SIZE,
)


class GenerationRepository:
    """Repository for generations and their output images."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Generations
    # =========================================================================

    async def create(self, generation: Generation) -> Generation:
        if not MIN_BATCH_SIZE <= generation.batch_size <= MAX_BATCH_SIZE:
            raise ValidationError(
                f"batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}",
                details={"batch_size": generation.batch_size}
            )
        return await self.save(generation)

    async def save(self, generation: Generation) -> Generation:
        self.session.add(generation)
        await commit_or_raise(self.session, f"generation {generation.id}")
        await self.session.refresh(generation)
        return generation

    async def claim_pending(self, generation_id: str) -> bool:
        """
        Move a PENDING generation to PROCESSING in one conditional UPDATE.

        Returns False when the row is missing or no longer PENDING, so only
        one of several concurrent workers ever wins the claim.
        """
        now = datetime.utcnow()
        result = await self.session.execute(
            update(Generation)
            .where(
                Generation.id == generation_id,
                Generation.status == GenerationStatus.PENDING.value
            )
            .values(status=GenerationStatus.PROCESSING.value, started_at=now, updated_at=now)
        )
        await commit_or_raise(self.session, f"claim of generation {generation_id}")
        return result.rowcount == 1

    async def set_task_id(self, generation_id: str, task_id: str):
        """Column-only update; the worker may already own the status."""
        await self._update_columns(generation_id, "task id", task_id=task_id)

    async def set_provider(self, generation_id: str, provider: str):
        await self._update_columns(generation_id, "provider", provider=provider)

    async def _update_columns(self, generation_id: str, what: str, **values):
        await self.session.execute(
            update(Generation).where(Generation.id == generation_id).values(**values)
        )
        await commit_or_raise(self.session, f"{what} of generation {generation_id}")

    async def get(self, generation_id: str) -> Optional[Generation]:
        result = await self.session.execute(
            select(Generation).where(Generation.id == generation_id)
        )
        return result.scalar_one_or_none()

    async def get_or_raise(self, generation_id: str) -> Generation:
        generation = await self.get(generation_id)
        if generation is None:
            raise GenerationNotFoundError(generation_id)
        return generation

    async def get_with_images(self, generation_id: str) -> Tuple[Generation, List[OutputImage]]:
        generation = await self.get_or_raise(generation_id)
        return generation, await self.images_for(generation.id)

    async def get_owner_id(self, generation: Generation) -> Optional[str]:
        result = await self.session.execute(
            select(Garment.owner_id).where(Garment.id == generation.garment_id)
        )
        return result.scalar_one_or_none()

    async def list_for_owner(
        self,
        owner_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[Tuple[Generation, int]]:
        """Owner's generations, newest first, each with its image count."""
        result = await self.session.execute(
            select(Generation)
            .join(Garment, Garment.id == Generation.garment_id)
            .where(Garment.owner_id == owner_id)
            .order_by(Generation.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        generations = list(result.scalars().all())
        counts = await self.image_counts([g.id for g in generations])
        return [(g, counts.get(g.id, 0)) for g in generations]

    async def list_for_garment(self, garment_id: str) -> List[Tuple[Generation, List[OutputImage]]]:
        """Generations of one garment with their images included."""
        result = await self.session.execute(
            select(Generation)
            .where(Generation.garment_id == garment_id)
            .order_by(Generation.created_at.desc())
        )
        generations = list(result.scalars().all())
        images = await self.images_for_many([g.id for g in generations])
        return [(g, images.get(g.id, [])) for g in generations]

    # =========================================================================
    # Output Images
    # =========================================================================

    async def save_image(self, image: OutputImage) -> OutputImage:
        self.session.add(image)
        await commit_or_raise(self.session, f"output image for generation {image.generation_id}")
        await self.session.refresh(image)
        return image

    async def get_image_or_raise(self, image_id: str) -> OutputImage:
        result = await self.session.execute(
            select(OutputImage).where(OutputImage.id == image_id)
        )
        image = result.scalar_one_or_none()
        if image is None:
            raise OutputImageNotFoundError(image_id)
        return image

    async def images_for(self, generation_id: str) -> List[OutputImage]:
        result = await self.session.execute(
            select(OutputImage)
            .where(OutputImage.generation_id == generation_id)
            .order_by(OutputImage.created_at)
        )
        return list(result.scalars().all())

    async def images_for_many(self, generation_ids: List[str]) -> Dict[str, List[OutputImage]]:
        if not generation_ids:
            return {}
        result = await self.session.execute(
            select(OutputImage)
            .where(OutputImage.generation_id.in_(generation_ids))
            .order_by(OutputImage.created_at)
        )
        grouped: Dict[str, List[OutputImage]] = {}
        for image in result.scalars().all():
            grouped.setdefault(image.generation_id, []).append(image)
        return grouped

    async def image_counts(self, generation_ids: List[str]) -> Dict[str, int]:
        if not generation_ids:
            return {}
        result = await self.session.execute(
            select(OutputImage.generation_id, func.count(OutputImage.id))
            .where(OutputImage.generation_id.in_(generation_ids))
            .group_by(OutputImage.generation_id)
        )
        return {generation_id: count for generation_id, count in result.all()}
