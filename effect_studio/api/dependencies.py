"""
FastAPI Dependencies for Effect Studio

Services are built once per application in the lifespan handler and kept on
app.state; the getters below hand them to route functions.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from effect_studio.core.config import Settings
from effect_studio.core.exceptions import CircuitBreaker
from effect_studio.core.logging import get_logger
from effect_studio.core.storage import IStorage, StorageFactory
from effect_studio.modules.imagery.effects import EffectRegistry
from effect_studio.modules.imagery.images import ImageStore
from effect_studio.modules.imagery.jobs import JobManager
from effect_studio.pipeline.executor import TransformExecutor
from effect_studio.pipeline.generation import GenerativeTransformer, GeminiTransformer

logger = get_logger(__name__)


@dataclass
class Services:
    """Everything a request handler may need."""
    config: Settings
    storage: IStorage
    image_store: ImageStore
    registry: EffectRegistry
    transformer: Optional[GenerativeTransformer]
    executor: TransformExecutor
    jobs: JobManager


def build_transformer(config: Settings) -> Optional[GenerativeTransformer]:
    """Gemini client when an API key is configured, otherwise None (fallback only)."""
    if not config.GEMINI_API_KEY:
        logger.warning("gemini_api_key_missing", fallback_enabled=config.FALLBACK_ENABLED)
        return None
    return GeminiTransformer(
        api_key=config.GEMINI_API_KEY,
        model=config.GEMINI_MODEL,
        base_url=config.GEMINI_API_BASE_URL,
        timeout_seconds=config.GENERATION_TIMEOUT_SECONDS,
    )


def build_services(
    config: Settings,
    transformer: Optional[GenerativeTransformer] = None,
    storage: Optional[IStorage] = None
) -> Services:
    if storage is None:
        storage = StorageFactory.create(config)
    if transformer is None:
        transformer = build_transformer(config)

    registry = EffectRegistry()
    image_store = ImageStore(
        storage,
        max_size_bytes=config.MAX_IMAGE_SIZE_BYTES,
        max_dimension=config.MAX_IMAGE_DIMENSION,
        jpeg_quality=config.UPLOAD_JPEG_QUALITY,
        ttl_seconds=config.IMAGE_TTL_SECONDS,
    )
    executor = TransformExecutor(
        registry,
        image_store,
        transformer,
        timeout_seconds=config.GENERATION_TIMEOUT_SECONDS,
        fallback_enabled=config.FALLBACK_ENABLED,
        fallback_on_timeout=config.FALLBACK_ON_TIMEOUT,
        result_quality=config.RESULT_JPEG_QUALITY,
        circuit_breaker=CircuitBreaker(
            "generation",
            failure_threshold=config.GENERATION_FAILURE_THRESHOLD,
            recovery_timeout=config.GENERATION_RECOVERY_SECONDS,
        ),
    )
    jobs = JobManager(
        registry,
        image_store,
        executor,
        job_ttl_seconds=config.JOB_TTL_SECONDS,
        default_intensity=config.DEFAULT_INTENSITY,
    )
    return Services(
        config=config,
        storage=storage,
        image_store=image_store,
        registry=registry,
        transformer=transformer,
        executor=executor,
        jobs=jobs,
    )


# =============================================================================
# Getters
# =============================================================================

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_image_store(request: Request) -> ImageStore:
    return request.app.state.services.image_store


def get_registry(request: Request) -> EffectRegistry:
    return request.app.state.services.registry


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.services.jobs
