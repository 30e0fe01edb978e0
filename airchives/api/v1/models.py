"""
Virtual Models Endpoint

GET /api/v1/models       - Active catalog entries
GET /api/v1/models/{id}  - One catalog entry
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from airchives.core.database import get_session
from airchives.modules.catalog.repositories import VirtualModelRepository

router = APIRouter()


@router.get("")
async def list_models(session: AsyncSession = Depends(get_session)):
    models = await VirtualModelRepository(session).list_active()
    return {"models": [m.to_response_dict() for m in models]}


@router.get("/{model_id}")
async def get_model(model_id: str, session: AsyncSession = Depends(get_session)):
    model = await VirtualModelRepository(session).get_or_raise(model_id)
    return model.to_response_dict()
