"""
Job Manager

Creates effect jobs, runs each one as a single background task, and answers
status polls. The manager is the only writer of job records, and every
write goes through a guard that refuses to touch a job already in a
terminal state.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, Optional

from effect_studio.core.exceptions import (
    EffectStudioError,
    UnknownImage,
    JobNotFound,
)
from effect_studio.core.logging import get_logger, LogContext
from effect_studio.core.metrics import record_job_started, record_job_finished
from effect_studio.modules.imagery.effects import EffectRegistry
from effect_studio.modules.imagery.images import ImageStore
from effect_studio.modules.imagery.models import (
    EffectJob,
    JobStatus,
    JobStatusView,
    ResultMethod,
)
from effect_studio.pipeline.executor import TransformExecutor

logger = get_logger(__name__)

STARTED_PROGRESS = 10


class JobManager:
    """In-process job table plus the tasks that drive it."""

    def __init__(
        self,
        registry: EffectRegistry,
        image_store: ImageStore,
        executor: TransformExecutor,
        job_ttl_seconds: int = 3600,
        default_intensity: float = 0.8
    ):
        self.registry = registry
        self.image_store = image_store
        self.executor = executor
        self.job_ttl_seconds = job_ttl_seconds
        self.default_intensity = default_intensity
        self._jobs: Dict[str, EffectJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def submit(
        self,
        source_image_id: str,
        effect_id: str,
        intensity: Optional[float] = None
    ) -> str:
        """
        Validate inputs, create a pending job and schedule its task.

        Raises:
            UnknownEffect: effect_id not in the registry (no job created)
            UnknownImage: source image not held by the store (no job created)
        """
        self.registry.resolve(effect_id)
        if not await self.image_store.exists(source_image_id):
            raise UnknownImage(source_image_id)

        job = EffectJob(
            source_image_id=source_image_id,
            effect_id=effect_id,
            intensity=self.default_intensity if intensity is None else intensity,
        )
        self._jobs[job.id] = job
        record_job_started()

        task = asyncio.create_task(self._run(job.id), name=f"effect-job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))

        logger.info(
            "job_submitted",
            job_id=job.id,
            effect_id=effect_id,
            source_image_id=source_image_id,
            intensity=job.intensity
        )
        return job.id

    def get_status(self, job_id: str) -> JobStatusView:
        """Snapshot of a job. Raises JobNotFound."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job.to_status()

    # -------------------------------------------------------------------------
    # Guarded mutations
    # -------------------------------------------------------------------------

    def _live_job(self, job_id: str) -> Optional[EffectJob]:
        job = self._jobs.get(job_id)
        if job is None or job.is_terminal:
            return None
        return job

    def _start(self, job_id: str) -> bool:
        job = self._live_job(job_id)
        if job is None:
            return False
        job.mark_started()
        job.advance(STARTED_PROGRESS)
        return True

    def _set_progress(self, job_id: str, progress: int) -> bool:
        job = self._live_job(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            return False
        # Completion is the only way to reach 100
        return job.advance(min(progress, 99))

    def _complete(self, job_id: str, result_image_id: str, method: ResultMethod, note: Optional[str]) -> bool:
        job = self._live_job(job_id)
        if job is None:
            logger.warning("late_completion_ignored", job_id=job_id)
            return False
        job.mark_completed(result_image_id, method, note)
        record_job_finished(job.status.value, job.duration_seconds)
        return True

    def _fail(self, job_id: str, error_message: str, error_code: str, error_stage: Optional[str] = None) -> bool:
        job = self._live_job(job_id)
        if job is None:
            logger.warning("late_failure_ignored", job_id=job_id, error_code=error_code)
            return False
        job.mark_failed(error_message, error_code, error_stage)
        record_job_finished(job.status.value, job.duration_seconds, error_code)
        return True

    # -------------------------------------------------------------------------
    # Task body
    # -------------------------------------------------------------------------

    async def _run(self, job_id: str):
        job = self._jobs[job_id]

        with LogContext(job_id=job_id):
            if not self._start(job_id):
                return
            logger.info("job_started", effect_id=job.effect_id)

            try:
                outcome = await self.executor.execute(
                    job.source_image_id,
                    job.effect_id,
                    lambda progress: self._set_progress(job_id, progress),
                    intensity=job.intensity,
                )
            except asyncio.CancelledError:
                self._fail(job_id, "Job cancelled during shutdown", "Cancelled")
                raise
            except EffectStudioError as e:
                self._fail(job_id, e.message, e.error_code, e.stage)
                logger.warning(
                    "job_failed",
                    error_code=e.error_code,
                    error=e.message,
                    error_stage=e.stage
                )
                return
            except Exception as e:
                self._fail(job_id, f"Unexpected error: {e}", "InternalError")
                logger.exception("job_crashed", error=str(e), error_type=type(e).__name__)
                return

            if self._complete(job_id, outcome.result_image_id, outcome.method, outcome.note):
                logger.info(
                    "job_completed",
                    result_image_id=outcome.result_image_id,
                    method=outcome.method.value,
                    duration_seconds=round(job.duration_seconds, 3)
                )

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> JobStatusView:
        """Wait for a job's task to finish, then return its status."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self.get_status(job_id)

    async def shutdown(self):
        """Cancel running tasks; their jobs end as failed."""
        running = dict(self._tasks)
        for task in running.values():
            task.cancel()
        if not running:
            return

        await asyncio.gather(*running.values(), return_exceptions=True)
        # A task cancelled before its first step never ran _run
        for job_id in running:
            if self._live_job(job_id) is not None:
                self._fail(job_id, "Job cancelled during shutdown", "Cancelled")
        logger.info("job_tasks_cancelled", count=len(running))

    def evict_expired(self, now: Optional[datetime] = None) -> int:
        """Drop terminal jobs older than the TTL. Returns the number evicted."""
        if self.job_ttl_seconds <= 0:
            return 0

        now = now or datetime.utcnow()
        cutoff = timedelta(seconds=self.job_ttl_seconds)
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.is_terminal and now - (job.completed_at or job.created_at) > cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]

        if expired:
            logger.info("jobs_evicted", count=len(expired))
        return len(expired)

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def __len__(self) -> int:
        return len(self._jobs)
