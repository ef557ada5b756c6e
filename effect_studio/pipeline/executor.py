"""
Transform Executor

Runs one effect against one stored image:

    resolve effect -> load source -> generate (bounded) -> fallback if needed
    -> encode JPEG -> persist result

Progress is reported through a callback owned by the caller (the job
manager), at 20 / 40 / 60 / 80 / 90 / 100. The generative call races a
timer; if the timer wins, the call is abandoned and whatever it eventually
returns is dropped.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional, Set, Tuple

from PIL import Image

from effect_studio.core.exceptions import (
    EffectStudioError,
    UnknownEffect,
    ImageNotFound,
    EffectNotFound,
    SourceNotFound,
    GenerationTimeout,
    GenerationError,
    PersistError,
    CircuitBreaker,
)
from effect_studio.core.logging import get_logger, with_logging
from effect_studio.core.metrics import (
    track_stage_latency,
    record_generation_call,
    record_result,
)
from effect_studio.modules.imagery.effects import EffectRegistry, intensity_directive
from effect_studio.modules.imagery.images import ImageStore
from effect_studio.modules.imagery.models import ResultMethod
from effect_studio.pipeline.filters import apply_fallback, encode_jpeg, load_image
from effect_studio.pipeline.generation import GenerativeTransformer

logger = get_logger(__name__)

ProgressCallback = Callable[[int], None]


@dataclass(frozen=True)
class TransformOutcome:
    result_image_id: str
    method: ResultMethod
    note: str


class TransformExecutor:
    """Turns (source image, effect) into a persisted result image."""

    def __init__(
        self,
        registry: EffectRegistry,
        image_store: ImageStore,
        transformer: Optional[GenerativeTransformer] = None,
        timeout_seconds: float = 30.0,
        fallback_enabled: bool = True,
        fallback_on_timeout: bool = False,
        result_quality: int = 90,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self.registry = registry
        self.image_store = image_store
        self.transformer = transformer
        self.timeout_seconds = timeout_seconds
        self.fallback_enabled = fallback_enabled
        self.fallback_on_timeout = fallback_on_timeout
        self.result_quality = result_quality
        self.circuit = circuit_breaker or CircuitBreaker("generation", failure_threshold=3, recovery_timeout=120)
        self._abandoned: Set[asyncio.Future] = set()

    async def execute(
        self,
        source_image_id: str,
        effect_id: str,
        report_progress: ProgressCallback,
        intensity: Optional[float] = None
    ) -> TransformOutcome:
        """
        Apply an effect and persist the result.

        Raises:
            EffectNotFound, SourceNotFound, GenerationTimeout,
            GenerationError, PersistError
        """
        with track_stage_latency("resolve"):
            try:
                effect = self.registry.resolve(effect_id)
            except UnknownEffect:
                raise EffectNotFound(effect_id) from None

        with track_stage_latency("load"):
            try:
                source_blob, source = await self.image_store.get_with_metadata(source_image_id)
            except ImageNotFound:
                raise SourceNotFound(source_image_id) from None
        report_progress(20)

        directive = intensity_directive(effect.directive, intensity)
        report_progress(40)
        generated, note = await self._generate(source, source_blob.content_type, directive)
        report_progress(60)

        result_image = None
        method = ResultMethod.GENERATED
        if generated is not None:
            try:
                result_image = await asyncio.to_thread(load_image, generated)
            except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
                logger.warning("generated_image_undecodable", error=str(e))
                note = self._decline(f"Generated image could not be decoded: {e}")

        if result_image is None:
            method = ResultMethod.FALLBACK
            result_image = await self._fallback(source, effect_id)
        report_progress(80)

        with track_stage_latency("encode"):
            result_bytes = await asyncio.to_thread(encode_jpeg, result_image, self.result_quality)
        report_progress(90)

        result_blob = await self._persist(result_bytes)
        report_progress(100)

        record_result(method.value, effect_id)
        logger.info(
            "transform_completed",
            effect_id=effect_id,
            method=method.value,
            result_image_id=result_blob.image_id,
            width=result_blob.width,
            height=result_blob.height
        )
        return TransformOutcome(result_blob.image_id, method, note)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def _decline(self, reason: str) -> str:
        """Generation produced no usable image: fall back, or fail if disabled."""
        if not self.fallback_enabled:
            raise GenerationError(reason)
        logger.info("generation_declined", reason=reason)
        return f"{reason}; applied fallback filters"

    def _timed_out(self) -> str:
        self.circuit.record_failure(TimeoutError("generation timeout"))
        record_generation_call("timeout")
        if self.fallback_enabled and self.fallback_on_timeout:
            return self._decline(f"Generation timed out after {self.timeout_seconds:g}s")
        raise GenerationTimeout(self.timeout_seconds)

    def _abandon(self, task: asyncio.Future):
        """Stop waiting on a generation call; its late result is discarded."""
        task.cancel()
        self._abandoned.add(task)
        task.add_done_callback(self._discard_late_result)

    def _discard_late_result(self, task: asyncio.Future):
        self._abandoned.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        logger.info(
            "late_generation_result_discarded",
            error=str(error) if error else None
        )

    @with_logging("generation")
    async def _generate(self, source: bytes, mime_type: str, directive: str) -> Tuple[Optional[bytes], str]:
        if self.transformer is None:
            record_generation_call("skipped")
            return None, self._decline("Generative service not configured")

        if not self.circuit.can_execute():
            record_generation_call("skipped")
            return None, self._decline("Generative service temporarily unavailable")

        task = asyncio.ensure_future(self.transformer.generate(source, mime_type, directive))
        with track_stage_latency("generation"):
            try:
                done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
            except asyncio.CancelledError:
                self._abandon(task)
                raise

        if not done:
            self._abandon(task)
            return None, self._timed_out()

        try:
            response = task.result()
        except GenerationTimeout:
            return None, self._timed_out()
        except Exception as e:
            self.circuit.record_failure(e)
            record_generation_call("error")
            logger.warning("generation_failed", error=str(e), error_type=type(e).__name__)
            reason = e.message if isinstance(e, EffectStudioError) else f"Generative service error: {e}"
            return None, self._decline(reason)

        self.circuit.record_success()

        part = response.first_image()
        if part is None:
            record_generation_call("text_only")
            return None, self._decline("Generative service returned no image")

        record_generation_call("image")
        logger.info("generation_completed", output_size=len(part.inline_data))
        return part.inline_data, "Image generated successfully"

    # -------------------------------------------------------------------------
    # Fallback + persistence
    # -------------------------------------------------------------------------

    @with_logging("fallback")
    async def _fallback(self, source: bytes, effect_id: str) -> Image.Image:
        with track_stage_latency("fallback"):
            try:
                image = await asyncio.to_thread(apply_fallback, source, effect_id)
            except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
                raise GenerationError(f"Source image could not be processed: {e}") from e
        logger.info("fallback_applied", effect_id=effect_id, width=image.width, height=image.height)
        return image

    @with_logging("persist")
    async def _persist(self, result_bytes: bytes):
        with track_stage_latency("persist"):
            try:
                return await self.image_store.put(result_bytes, "image/jpeg", folder="results")
            except EffectStudioError as e:
                raise PersistError(f"Failed to save result image: {e.message}") from e
