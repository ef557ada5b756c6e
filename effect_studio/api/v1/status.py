"""
Status Endpoint - Job Status Tracking

GET /api/v1/status/{job_id} - Current state of an effect job
"""

from typing import Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from effect_studio.core.logging import get_logger
from effect_studio.api.dependencies import get_job_manager
from effect_studio.modules.imagery.jobs import JobManager

logger = get_logger(__name__)
router = APIRouter()


class JobStatusResponse(BaseModel):
    """Polling view of a job. result_* is set only when completed, error_* only when failed."""
    job_id: str
    effect_id: str
    status: str
    progress: int
    result_image_id: Optional[str] = None
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    method: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


@router.get("/{job_id}", response_model=JobStatusResponse, name="get_job_status")
async def get_job_status(
    job_id: str,
    request: Request,
    jobs: JobManager = Depends(get_job_manager)
):
    """
    Get the current status of an effect job.

    Side-effect free; repeated polls of a terminal job return identical bodies.
    """
    view = jobs.get_status(job_id)

    result_url = None
    if view.result_image_id:
        result_url = str(request.url_for("get_image_file", image_id=view.result_image_id).path)

    return JobStatusResponse(
        job_id=view.job_id,
        effect_id=view.effect_id,
        status=view.status.value,
        progress=view.progress,
        result_image_id=view.result_image_id,
        result_url=result_url,
        error_message=view.error_message,
        error_code=view.error_code,
        method=view.method.value if view.method else None,
        note=view.note,
        created_at=view.created_at,
        completed_at=view.completed_at,
    )
