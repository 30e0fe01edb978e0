"""
Garment Repository

Owner-scoped access to garments. Deleting a garment removes its generations
and their output images and hands back the storage keys to clean up.
"""

from typing import Optional, List

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from airchives.core.database import commit_or_raise
from airchives.core.exceptions import GarmentNotFoundError
from airchives.modules.garments.models import Garment
from airchives.modules.generations.models import Generation, OutputImage


class GarmentRepository:
    """Repository for uploaded garments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, garment: Garment) -> Garment:
        self.session.add(garment)
        await commit_or_raise(self.session, f"garment {garment.id}")
        await self.session.refresh(garment)
        return garment

    async def get(self, garment_id: str) -> Optional[Garment]:
        result = await self.session.execute(
            select(Garment).where(Garment.id == garment_id)
        )
        return result.scalar_one_or_none()

    async def get_or_raise(self, garment_id: str, owner_id: Optional[str] = None) -> Garment:
        garment = await self.get(garment_id)
        if garment is None or (owner_id is not None and garment.owner_id != owner_id):
            raise GarmentNotFoundError(garment_id)
        return garment

    async def list_for_owner(self, owner_id: str, limit: int = 50, offset: int = 0) -> List[Garment]:
        result = await self.session.execute(
            select(Garment)
            .where(Garment.owner_id == owner_id)
            .order_by(Garment.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def delete(self, garment: Garment) -> List[str]:
        """Delete the garment and its children; return storage keys they referenced."""
        generation_ids = select(Generation.id).where(Generation.garment_id == garment.id)

        result = await self.session.execute(
            select(OutputImage.storage_key).where(OutputImage.generation_id.in_(generation_ids))
        )
        storage_keys = [key for key in result.scalars().all() if key]
        if garment.original_storage_key:
            storage_keys.append(garment.original_storage_key)

        await self.session.execute(
            delete(OutputImage).where(OutputImage.generation_id.in_(generation_ids))
        )
        await self.session.execute(
            delete(Generation).where(Generation.garment_id == garment.id)
        )
        await self.session.delete(garment)
        await commit_or_raise(self.session, f"deletion of garment {garment.id}")
        return storage_keys
