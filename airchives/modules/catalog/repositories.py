from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from airchives.core.database import commit_or_raise
from airchives.core.exceptions import VirtualModelNotFoundError
from airchives.core.logging import get_logger
from airchives.modules.catalog.models import VirtualModel, build_seed_models

logger = get_logger(__name__)


class VirtualModelRepository:
    """Read access to the virtual model catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, model_id: str) -> Optional[VirtualModel]:
        result = await self.session.execute(
            select(VirtualModel).where(VirtualModel.id == model_id)
        )
        return result.scalar_one_or_none()

    async def get_or_raise(self, model_id: str) -> VirtualModel:
        """Unknown ids are an error; there is no default model."""
        model = await self.get(model_id)
        if model is None or not model.is_active:
            raise VirtualModelNotFoundError(model_id)
        return model

    async def list_active(self) -> List[VirtualModel]:
        result = await self.session.execute(
            select(VirtualModel)
            .where(VirtualModel.is_active == True)  # noqa: E712
            .order_by(VirtualModel.name)
        )
        return list(result.scalars().all())

    async def seed(self, models: Optional[List[VirtualModel]] = None) -> int:
        """Insert catalog entries that are missing. Returns how many were added."""
        models = models if models is not None else build_seed_models()
        result = await self.session.execute(select(VirtualModel.id))
        existing = set(result.scalars().all())

        added = 0
        for model in models:
            if model.id not in existing:
                self.session.add(model)
                added += 1

        if added:
            await commit_or_raise(self.session, "virtual model catalog")
            logger.info("virtual_models_seeded", added=added)
        return added
