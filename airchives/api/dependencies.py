"""
FastAPI Dependencies

Provides dependency injection for:
- Request owner (X-Owner-Id header, configured default otherwise)
- Garment intake orchestrator (singleton)
- Generation dispatcher (singleton, selected by PIPELINE_EXECUTOR)
"""

from typing import Optional

from fastapi import Header

from airchives.core.config import settings
from airchives.engines.garment.intake import GarmentIntakeOrchestrator
from airchives.pipeline.dispatch import GenerationDispatcher, get_dispatcher as _get_dispatcher

_intake: Optional[GarmentIntakeOrchestrator] = None


def get_owner_id(x_owner_id: Optional[str] = Header(default=None)) -> str:
    """Authentication is handled upstream; the owner arrives as a header."""
    return (x_owner_id or "").strip() or settings.DEFAULT_OWNER_ID


def get_intake_orchestrator() -> GarmentIntakeOrchestrator:
    global _intake
    if _intake is None:
        _intake = GarmentIntakeOrchestrator()
    return _intake


def get_dispatcher() -> GenerationDispatcher:
    return _get_dispatcher()
