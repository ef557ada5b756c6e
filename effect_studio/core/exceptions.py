"""
Global Exception Handling

Error taxonomy for the effect pipeline, structured JSON error responses,
and the circuit breaker that guards the generative service.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from effect_studio.core.logging import get_logger, job_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class EffectStudioError(Exception):
    """Base exception for Effect Studio."""

    error_code = "InternalError"

    def __init__(
        self,
        message: str,
        code: int = 500,
        job_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.job_id = job_id or job_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_code": self.error_code,
            "code": self.code,
            "job_id": self.job_id,
            "stage": self.stage,
            "details": self.details,
            "timestamp": datetime.utcnow().isoformat() + "Z"
        }


# -----------------------------------------------------------------------------
# Validation errors (synchronous, surfaced to the HTTP caller)
# -----------------------------------------------------------------------------

class InvalidImage(EffectStudioError):
    """Uploaded bytes do not decode as an image."""

    error_code = "InvalidImage"

    def __init__(self, message: str = "File is not a decodable image", **kwargs):
        super().__init__(message, code=400, **kwargs)


class UnsupportedFormat(EffectStudioError):
    """Decoded image format is not in the allow-list."""

    error_code = "UnsupportedFormat"

    def __init__(self, image_format: Optional[str], allowed: list, **kwargs):
        super().__init__(
            f"Unsupported image format '{image_format}'. Allowed: {', '.join(allowed)}",
            code=415,
            **kwargs
        )
        self.details["format"] = image_format
        self.details["allowed"] = allowed


class TooLarge(EffectStudioError):
    """Upload exceeds the byte size limit."""

    error_code = "TooLarge"

    def __init__(self, size_bytes: int, max_bytes: int, **kwargs):
        super().__init__(
            f"Image size ({size_bytes / (1024 * 1024):.2f}MB) exceeds maximum "
            f"allowed size ({max_bytes / (1024 * 1024):.0f}MB)",
            code=413,
            **kwargs
        )
        self.details["size_bytes"] = size_bytes
        self.details["max_bytes"] = max_bytes


class ImageNotFound(EffectStudioError):
    """Image id is unknown, expired, or its blob vanished."""

    error_code = "NotFound"

    def __init__(self, image_id: str, **kwargs):
        super().__init__(f"Image not found: {image_id}", code=404, **kwargs)
        self.details["image_id"] = image_id


class UnknownImage(EffectStudioError):
    """Effect submitted against an image id the store does not hold."""

    error_code = "UnknownImage"

    def __init__(self, image_id: str, **kwargs):
        super().__init__(f"Unknown image: {image_id}", code=404, **kwargs)
        self.details["image_id"] = image_id


class UnknownEffect(EffectStudioError):
    """Effect id is not in the registry."""

    error_code = "UnknownEffect"

    def __init__(self, effect_id: str, **kwargs):
        super().__init__(f"Unknown effect: {effect_id}", code=400, **kwargs)
        self.details["effect_id"] = effect_id


class JobNotFound(EffectStudioError):
    """Job id was never submitted or has been evicted."""

    error_code = "JobNotFound"

    def __init__(self, job_id: str, **kwargs):
        super().__init__(f"Job not found: {job_id}", code=404, **kwargs)
        self.details["job_id"] = job_id


# -----------------------------------------------------------------------------
# Transformation errors (captured into the job's failed state)
# -----------------------------------------------------------------------------

class TransformError(EffectStudioError):
    """Raised by the transform executor; fatal to the job, never retried."""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, code=500, stage=stage, **kwargs)


class SourceNotFound(TransformError):
    error_code = "SourceNotFound"

    def __init__(self, image_id: str, **kwargs):
        super().__init__(f"Source image not found: {image_id}", stage="load", **kwargs)


class EffectNotFound(TransformError):
    error_code = "EffectNotFound"

    def __init__(self, effect_id: str, **kwargs):
        super().__init__(f"Effect not found: {effect_id}", stage="resolve", **kwargs)


class GenerationTimeout(TransformError):
    error_code = "GenerationTimeout"

    def __init__(self, timeout_seconds: float, **kwargs):
        super().__init__(
            f"Image generation timed out after {timeout_seconds:g} seconds",
            stage="generation",
            **kwargs
        )
        self.details["timeout_seconds"] = timeout_seconds


class GenerationError(TransformError):
    error_code = "GenerationError"

    def __init__(self, message: str, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, stage="generation", **kwargs)
        if http_status is not None:
            self.details["http_status"] = http_status


class PersistError(TransformError):
    error_code = "PersistError"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, stage="persist", **kwargs)


class StorageError(EffectStudioError):
    """Raised when a blob backend cannot complete a write."""

    error_code = "StorageError"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


# =============================================================================
# Circuit Breaker Implementation
# =============================================================================

class CircuitBreaker:
    """
    Circuit Breaker around an unreliable external dependency.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests fail fast
    - HALF_OPEN: Testing if service is recovered
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 1
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self._failure_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._state = "CLOSED"
        self._half_open_calls = 0

    @property
    def state(self) -> str:
        """Get current circuit breaker state."""
        if self._state == "OPEN" and self._last_failure_time:
            elapsed = (datetime.utcnow() - self._last_failure_time).total_seconds()
            if elapsed >= self.recovery_timeout:
                self._state = "HALF_OPEN"
                self._half_open_calls = 0
        return self._state

    def can_execute(self) -> bool:
        """Check if request can proceed."""
        state = self.state

        if state == "CLOSED":
            return True
        if state == "HALF_OPEN":
            return self._half_open_calls < self.half_open_max_calls
        return False

    def record_success(self):
        """Record a successful call."""
        if self._state == "HALF_OPEN":
            self._half_open_calls += 1
            if self._half_open_calls >= self.half_open_max_calls:
                self._state = "CLOSED"
                self._failure_count = 0
                logger.info("circuit_breaker_closed", circuit=self.name)
        elif self._state == "CLOSED":
            self._failure_count = 0

    def record_failure(self, error: Optional[Exception] = None):
        """Record a failed call."""
        self._failure_count += 1
        self._last_failure_time = datetime.utcnow()

        if self._state == "HALF_OPEN":
            self._state = "OPEN"
            logger.warning(
                "circuit_breaker_reopened",
                circuit=self.name,
                error=str(error) if error else None
            )
        elif self._state == "CLOSED" and self._failure_count >= self.failure_threshold:
            self._state = "OPEN"
            logger.warning(
                "circuit_breaker_opened",
                circuit=self.name,
                failure_count=self._failure_count,
                error=str(error) if error else None
            )

    def reset(self):
        """Reset the circuit breaker."""
        self._state = "CLOSED"
        self._failure_count = 0
        self._last_failure_time = None
        self._half_open_calls = 0


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(EffectStudioError)
    async def effect_studio_exception_handler(request: Request, exc: EffectStudioError):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "request_failed",
            error=exc.message,
            error_code=exc.error_code,
            code=exc.code,
            path=str(request.url.path),
            details=exc.details
        )

        return JSONResponse(status_code=exc.code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "error_code": "InternalError",
                "code": 500,
                "job_id": job_id_var.get(),
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
