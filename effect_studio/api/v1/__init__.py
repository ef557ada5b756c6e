"""
API v1 Router Module - Effect Studio

All v1 endpoints are prefixed with /api/v1/

- /api/v1/images/*  - Upload and fetch images
- /api/v1/effects/* - Effect catalog and job submission
- /api/v1/status/*  - Job polling
- /api/v1/metrics   - Prometheus scrape target
"""

from fastapi import APIRouter

from effect_studio.api.v1.images import router as images_router
from effect_studio.api.v1.effects import router as effects_router
from effect_studio.api.v1.status import router as status_router
from effect_studio.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(images_router, prefix="/images", tags=["images"])
api_v1_router.include_router(effects_router, prefix="/effects", tags=["effects"])
api_v1_router.include_router(status_router, prefix="/status", tags=["status"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
