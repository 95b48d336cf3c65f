"""
job_queue.py — In-memory job table + single background worker.

submit() registers a job as 'pending' and pushes its id onto an asyncio.Queue.
Exactly one consumer task drains that queue, processing one job at a time
(FIFO) until it is completed or failed:

    pending ─▶ processing (10) ─▶ request loaded (30) ─▶ generated (70) ─▶ completed (100)
                     └──────────────────── any error ─────────────────────▶ failed (0)

A failing job never stops the worker. There is no job-level retry: transient
generator errors are retried inside ResilientGenerator.

The table is bounded: at most max_active_jobs jobs may be pending or
processing at once (QueueFullError otherwise), and finished jobs are pruned
once they are older than retention_seconds.
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta, timezone

from errors import DuplicateJobError, GeneratorError, PersistenceError, PipelineError, QueueFullError
from models import PLAN_COMPLETED, PLAN_FAILED
from plan_store import PlanStore
from resilient_client import ResilientGenerator
from schemas import Job, JobState

logger = logging.getLogger(__name__)

GENERIC_FAILURE = 'Plan generation failed'

_TRANSITIONS = {
    JobState.PENDING:    {JobState.PROCESSING},
    JobState.PROCESSING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED:  set(),
    JobState.FAILED:     set(),
}
_ACTIVE = (JobState.PENDING, JobState.PROCESSING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    def __init__(self, store: PlanStore, client: ResilientGenerator,
                 max_active_jobs: int = 100, retention_seconds: float = 3600,
                 clock=_utcnow):
        self.store = store
        self.client = client
        self.max_active_jobs = max_active_jobs
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    # ── Submission / inspection ───────────────────────────────────────────────

    def submit(self, job_id: str) -> None:
        self.prune()
        if job_id in self._jobs:
            raise DuplicateJobError(job_id)
        if self.active_count() >= self.max_active_jobs:
            raise QueueFullError(self.max_active_jobs)

        now = self._clock()
        self._jobs[job_id] = Job(job_id=job_id, created_at=now, updated_at=now)
        self._queue.put_nowait(job_id)
        logger.info('Job %s queued (%d waiting)', job_id[:8], self._queue.qsize())
        self.start()

    def get_status(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy() if job is not None else None

    def is_full(self) -> bool:
        return self.active_count() >= self.max_active_jobs

    def active_count(self) -> int:
        return sum(1 for j in self._jobs.values() if j.status in _ACTIVE)

    def active_job_ids(self) -> set[str]:
        return {j.job_id for j in self._jobs.values() if j.status in _ACTIVE}

    def prune(self) -> int:
        """Forget finished jobs older than the retention period."""
        cutoff = self._clock() - timedelta(seconds=self.retention_seconds)
        expired = [jid for jid, j in self._jobs.items()
                   if j.status not in _ACTIVE and j.updated_at < cutoff]
        for jid in expired:
            del self._jobs[jid]
        if expired:
            logger.info('Pruned %d finished job(s) from memory', len(expired))
        return len(expired)

    def stats(self) -> dict:
        counts = {state.value: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return {
            'jobs':            counts,
            'queued':          self._queue.qsize(),
            'max_active_jobs': self.max_active_jobs,
            'worker_running':  self._worker is not None and not self._worker.done(),
        }

    # ── Worker lifecycle ──────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the consumer task unless one is already running."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def wait_idle(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _drain(self) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self.process_one(job_id)
            except Exception:
                logger.exception('Job %s: unhandled error in worker', job_id[:8])
            finally:
                self._queue.task_done()

    # ── Processing ────────────────────────────────────────────────────────────

    def _update(self, job: Job, status: JobState | None = None, **fields) -> None:
        if status is not None and status != job.status:
            if status not in _TRANSITIONS[job.status]:
                raise ValueError(f'Illegal job transition {job.status.value} -> {status.value}')
            job.status = status
        for name, value in fields.items():
            setattr(job, name, value)
        job.updated_at = self._clock()

    async def process_one(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobState.PENDING:
            logger.warning('Job %s: not pending, skipping', job_id[:8])
            return

        plan_id = None
        try:
            self._update(job, JobState.PROCESSING, progress=10)

            stored = await self.store.fetch_request_for_job(job_id)
            if stored is None:
                raise PersistenceError('Plan not found in database')
            plan_id = stored.plan_id
            self._update(job, progress=30)

            logger.info('Job %s: generating plan %d for %s', job_id[:8], plan_id,
                        stored.request.destination)
            result = await self.client.generate(stored.request)
            if not result.success or result.data is None:
                raise GeneratorError(result.error or 'AI generation failed')
            self._update(job, progress=70)

            await self.store.save_generated_itinerary(plan_id, result.data)
            await self.store.update_plan_status(plan_id, PLAN_COMPLETED)
            self._update(job, JobState.COMPLETED, progress=100, plan_id=plan_id)
            logger.info('Job %s: complete — plan %d (%d days)', job_id[:8], plan_id,
                        len(result.data.days))

        except Exception as exc:
            if isinstance(exc, PipelineError):
                message = str(exc) or GENERIC_FAILURE
                logger.error('Job %s failed: %s', job_id[:8], message)
            else:
                message = GENERIC_FAILURE
                logger.error('Job %s failed: %s', job_id, exc, exc_info=True)

            if job.status == JobState.PROCESSING:
                self._update(job, JobState.FAILED, progress=0, error_message=message)
            await self._mark_plan_failed(job_id, plan_id, message)

    async def _mark_plan_failed(self, job_id: str, plan_id: int | None, message: str) -> None:
        """Best effort: a failure here must not hide the original error."""
        try:
            if plan_id is None:
                plan_id = await self.store.find_plan_id(job_id)
            if plan_id is None:
                return
            await self.store.record_failure(plan_id, message, {'job_id': job_id})
            await self.store.update_plan_status(plan_id, PLAN_FAILED)
        except Exception as exc:
            logger.warning('Job %s: could not mark plan as failed: %s', job_id[:8], exc)
