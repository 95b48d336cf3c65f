"""
pipeline.py — Composition root for asynchronous plan generation.

GenerationPipeline owns one instance of every moving part (store, cache,
circuit breaker, monitor, resilient client, job queue); nothing here is a
module-level singleton, so tests build isolated pipelines with
GenerationPipeline(...) or build_pipeline(...) and fakes of their choosing.

Operations exposed to the HTTP layer:
  submit_job(body)              → {job_id, status, estimated_completion}
  poll_status(job_id)           → {job_id, status, progress, plan_id, error_message} | None
  get_circuit_breaker_stats()
  get_cache_stats()
  get_health_status()
  run_maintenance()             → cache sweep + job prune + stale-plan watchdog
"""

import logging
from datetime import datetime, timedelta, timezone

import config
from cache import GenerationCache
from circuit_breaker import CircuitBreaker
from errors import PersistenceError, QueueFullError
from generators import BaseGenerator, create_generator
from job_queue import GENERIC_FAILURE, JobQueue
from models import PLAN_FAILED
from monitoring import GenerationMonitor
from plan_store import PlanStore
from progress import estimate_progress, estimated_completion
from resilient_client import ResilientGenerator, retry_budget
from schemas import GeneratePlanRequest, JobState, JobStatusResponse, SubmitJobResponse

logger = logging.getLogger(__name__)


class GenerationPipeline:
    def __init__(self, store: PlanStore, client: ResilientGenerator, queue: JobQueue,
                 estimate_seconds: float = config.ESTIMATED_GENERATION_SECONDS,
                 stale_plan_seconds: float = config.STALE_PLAN_SECONDS):
        self.store = store
        self.client = client
        self.queue = queue
        self.estimate_seconds = estimate_seconds
        self.stale_plan_seconds = stale_plan_seconds

    # ── Submission ────────────────────────────────────────────────────────────

    async def submit_job(self, body: GeneratePlanRequest) -> SubmitJobResponse:
        """Persist the plan and queue its generation; returns immediately."""
        if self.queue.is_full():
            raise QueueFullError(self.queue.max_active_jobs)

        plan_id, job_id, created_at = await self.store.create_plan(body)
        try:
            self.queue.submit(job_id)
        except QueueFullError as exc:
            # The queue filled up while the plan row was being written.
            await self._abandon_plan(plan_id, job_id, str(exc))
            raise

        return SubmitJobResponse(
            job_id=job_id,
            estimated_completion=estimated_completion(created_at, self.estimate_seconds),
        )

    async def _abandon_plan(self, plan_id: int, job_id: str, message: str) -> None:
        """Best effort: the caller must still see the QueueFullError."""
        try:
            await self.store.record_failure(plan_id, message, {'job_id': job_id})
            await self.store.update_plan_status(plan_id, PLAN_FAILED)
        except PersistenceError as exc:
            logger.warning('Job %s: could not mark rejected plan %d as failed: %s',
                           job_id[:8], plan_id, exc)

    # ── Polling ───────────────────────────────────────────────────────────────

    async def poll_status(self, job_id: str) -> JobStatusResponse | None:
        job = self.queue.get_status(job_id)
        if job is not None:
            return JobStatusResponse(
                job_id=job.job_id,
                status=job.status,
                progress=job.progress,
                plan_id=job.plan_id if job.status == JobState.COMPLETED else None,
                error_message=(job.error_message or GENERIC_FAILURE)
                if job.status == JobState.FAILED else None,
            )

        # Not (or no longer) in memory: answer from the persisted plan row.
        row = await self.store.get_status_row(job_id)
        if row is None:
            return None
        progress = estimate_progress(
            row.created_at,
            estimated_completion(row.created_at, self.estimate_seconds),
            row.status,
        )
        return JobStatusResponse(
            job_id=job_id,
            status=JobState(row.status),
            progress=progress,
            plan_id=row.plan_id if row.status == JobState.COMPLETED.value else None,
            error_message=(row.error_message or GENERIC_FAILURE)
            if row.status == JobState.FAILED.value else None,
        )

    # ── Monitoring ────────────────────────────────────────────────────────────

    def get_circuit_breaker_stats(self) -> dict:
        return self.client.breaker.get_stats()

    def get_cache_stats(self) -> dict:
        return self.client.cache.get_stats()

    def get_health_status(self) -> dict:
        status = self.client.get_health_status()
        status['queue'] = self.queue.stats()
        status['healthy'] = (self.client.breaker.is_healthy()
                             and status['monitoring']['healthy'])
        return status

    # ── Lifecycle / maintenance ───────────────────────────────────────────────

    def start(self) -> None:
        self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()

    async def fail_stale_plans(self) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.stale_plan_seconds)
        return await self.store.fail_stale_plans(cutoff, exclude_job_ids=self.queue.active_job_ids())

    async def run_maintenance(self) -> dict:
        return {
            'cache_entries_removed': self.client.cache.cleanup(),
            'jobs_pruned':           self.queue.prune(),
            'stale_plans_failed':    await self.fail_stale_plans(),
        }


def build_pipeline(store: PlanStore, generator: BaseGenerator | None = None,
                   redis_client=None) -> GenerationPipeline:
    """Wire a pipeline from the values in config.py."""
    generator = generator or create_generator()
    cache = GenerationCache(
        max_size=config.CACHE_MAX_SIZE,
        default_ttl=config.CACHE_TTL_SECONDS,
        redis_client=redis_client,
    )
    # The breaker races the whole retry loop, so its deadline must leave room
    # for every attempt plus the backoff sleeps between them.
    breaker = CircuitBreaker(
        failure_threshold=config.BREAKER_FAILURE_THRESHOLD,
        recovery_timeout=config.BREAKER_RECOVERY_SECONDS,
        expected_response_time=max(
            config.GENERATOR_TIMEOUT_SECONDS,
            retry_budget(config.GENERATOR_ATTEMPT_TIMEOUT_SECONDS, config.GENERATOR_MAX_RETRIES),
        ),
    )
    client = ResilientGenerator(
        generator, cache, breaker, GenerationMonitor(),
        max_retries=config.GENERATOR_MAX_RETRIES,
        attempt_timeout=config.GENERATOR_ATTEMPT_TIMEOUT_SECONDS,
    )
    queue = JobQueue(
        store, client,
        max_active_jobs=config.MAX_ACTIVE_JOBS,
        retention_seconds=config.JOB_RETENTION_SECONDS,
    )
    return GenerationPipeline(store, client, queue)
