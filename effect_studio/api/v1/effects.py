"""
Effect Endpoints

GET  /api/v1/effects        - List available effects
POST /api/v1/effects/apply  - Submit an effect job (202, poll /status/{job_id})
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from effect_studio.core.logging import get_logger
from effect_studio.api.dependencies import Services, get_registry, get_services
from effect_studio.modules.imagery.effects import EffectRegistry

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Request/Response Schemas
# =============================================================================

class EffectInfo(BaseModel):
    id: str
    display_name: str
    description: str


class EffectListResponse(BaseModel):
    effects: List[EffectInfo]


class ApplyEffectRequest(BaseModel):
    """Request to apply an effect to an uploaded image."""
    image_id: str = Field(..., min_length=1, description="Id returned by /images/upload")
    effect_id: str = Field(..., min_length=1, description="One of the ids from GET /effects")
    intensity: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="How strongly to apply the effect (defaults to DEFAULT_INTENSITY)"
    )


class ApplyEffectResponse(BaseModel):
    job_id: str
    status: str = "pending"
    poll_url: str
    estimated_time_seconds: int


# =============================================================================
# Endpoints
# =============================================================================

@router.get("", response_model=EffectListResponse)
async def list_effects(registry: EffectRegistry = Depends(get_registry)):
    """List effects; directives are kept server-side."""
    return {"effects": registry.list()}


@router.post("/apply", response_model=ApplyEffectResponse, status_code=202)
async def apply_effect(
    body: ApplyEffectRequest,
    request: Request,
    services: Services = Depends(get_services)
):
    """
    Submit an effect job.

    Returns immediately with a job id. The transformation runs in the
    background; poll the status endpoint until the job is completed or failed.
    """
    job_id = await services.jobs.submit(body.image_id, body.effect_id, intensity=body.intensity)

    return ApplyEffectResponse(
        job_id=job_id,
        poll_url=str(request.url_for("get_job_status", job_id=job_id).path),
        estimated_time_seconds=int(services.config.GENERATION_TIMEOUT_SECONDS)
    )
