"""
Metrics Endpoint

GET /api/v1/metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from effect_studio.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - effect_pipeline_latency_seconds (per stage)
    - effect_generation_calls_total
    - effect_results_total (generated vs fallback)
    - effect_jobs_total
    - http_requests_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
