"""
resilient_client.py — Cache + circuit breaker + bounded retry around a generator.

ResilientGenerator.generate() never raises: every failure comes back as a
GenerationResult(success=False, error=...), so the job queue always gets a
structured answer.

    bad request → failed result; cache, breaker and metrics untouched
    cache hit   → returned at once with processing_time_ms = 0
    cache miss  → breaker.execute(retry loop) → cache + success metric
    any error   → error metric → failed result
"""

import asyncio
import logging
import time

from cache import GenerationCache, is_cacheable
from circuit_breaker import CircuitBreaker
from errors import (
    GeneratorError, GeneratorTimeoutError, PipelineError, ValidationError, status_code_of,
)
from generators import BaseGenerator
from monitoring import GenerationMonitor
from schemas import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)


def backoff_delay(retry_number: int) -> float:
    """Seconds to wait before retry ``retry_number`` (1-based): 1, 2, 4, ..."""
    return float(2 ** (retry_number - 1))


def retry_budget(attempt_timeout: float, max_retries: int) -> float:
    """Worst-case seconds for one retry loop: every attempt times out, plus all backoff sleeps."""
    return attempt_timeout * (max_retries + 1) + sum(backoff_delay(n) for n in range(1, max_retries + 1))


class ResilientGenerator:
    def __init__(self, generator: BaseGenerator, cache: GenerationCache,
                 breaker: CircuitBreaker, monitor: GenerationMonitor,
                 max_retries: int = 3, attempt_timeout: float = 60.0,
                 sleep=asyncio.sleep):
        self.generator = generator
        self.cache = cache
        self.breaker = breaker
        self.monitor = monitor
        self.max_retries = max_retries
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        started = time.monotonic()

        # Validation failures never reach the cache or the breaker.
        try:
            self.generator.validate_request(request)
        except ValidationError as exc:
            logger.warning('Generator: rejected request for %r: %s', request.destination, exc)
            return GenerationResult(success=False, error=str(exc))

        cached = self.cache.get(request)
        if cached is not None:
            logger.info('Generator: serving %s from cache', request.destination)
            return cached

        try:
            result = await self.breaker.execute(lambda: self._call_with_retry(request))
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            if not isinstance(exc, PipelineError):
                logger.error('Generator call for %s raised an unexpected %s',
                             request.destination, type(exc).__name__, exc_info=True)
            self.monitor.record_error(request, message, status_code_of(exc))
            return GenerationResult(
                success=False,
                error=message,
                processing_time_ms=int((time.monotonic() - started) * 1000),
            )

        if is_cacheable(request):
            self.cache.set(request, result)
        self.monitor.record_success(request, result.processing_time_ms,
                                    result.tokens_used, self.generator.model)
        return result

    async def _call_with_retry(self, request: GenerationRequest) -> GenerationResult:
        attempts = self.max_retries + 1
        attempt = 1
        while True:
            try:
                return await self._attempt(request)
            except Exception as exc:
                if not getattr(exc, 'retryable', False) or attempt >= attempts:
                    raise
                delay = backoff_delay(attempt)
                logger.warning('Generator attempt %d/%d for %s failed (%s), retrying in %gs',
                               attempt, attempts, request.destination, exc, delay)
                await self._sleep(delay)
                attempt += 1

    async def _attempt(self, request: GenerationRequest) -> GenerationResult:
        try:
            result = await asyncio.wait_for(self.generator.generate(request),
                                            timeout=self.attempt_timeout)
        except asyncio.TimeoutError as exc:
            raise GeneratorTimeoutError(
                f'Generator attempt timed out after {self.attempt_timeout:g}s'
            ) from exc

        if not result.success or result.data is None:
            raise GeneratorError(result.error or 'AI generation failed')
        return result

    def get_health_status(self) -> dict:
        return {
            'circuit_breaker': self.breaker.get_stats(),
            'cache':           self.cache.get_stats(),
            'monitoring':      self.monitor.get_health_status(),
            'model':           self.generator.model,
        }
