"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- /api/v1/garments  - Upload and intake
- /api/v1/generate  - Generation requests and status
- /api/v1/images    - Favorite and download counters
- /api/v1/models    - Virtual model catalog
- /api/v1/metrics   - Prometheus
"""

from fastapi import APIRouter

from airchives.api.v1.garments import router as garments_router
from airchives.api.v1.generations import router as generations_router
from airchives.api.v1.images import router as images_router
from airchives.api.v1.models import router as models_router
from airchives.api.v1.metrics import router as metrics_router

api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(garments_router, prefix="/garments", tags=["garments"])
api_v1_router.include_router(generations_router, prefix="/generate", tags=["generation"])
api_v1_router.include_router(images_router, prefix="/images", tags=["images"])
api_v1_router.include_router(models_router, prefix="/models", tags=["models"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
