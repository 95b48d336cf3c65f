"""Shared fixtures: an in-memory database, isolated pipelines and fake generators."""

from datetime import date

import pytest
from sqlalchemy.pool import StaticPool

from cache import GenerationCache
from circuit_breaker import CircuitBreaker
from database import build_engine, build_session_factory, init_db
from errors import TransientServiceError
from generators import BaseGenerator, MockGenerator
from job_queue import JobQueue
from monitoring import GenerationMonitor
from pipeline import GenerationPipeline
from plan_store import PlanStore
from resilient_client import ResilientGenerator
from schemas import GeneratePlanRequest, GenerationRequest


@pytest.fixture
def anyio_backend():
    return 'asyncio'


class FakeClock:
    """Manually advanced clock for breaker, cache and monitor tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FailingGenerator(BaseGenerator):
    """Raises ``error`` for the first ``failures`` calls, then delegates to a mock."""

    model = 'failing'

    def __init__(self, error: Exception | None = None, failures: int = 10 ** 6):
        self.error = error or TransientServiceError('Service unavailable', status_code=503)
        self.failures = failures
        self.calls = 0
        self._mock = MockGenerator()

    async def generate(self, request):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return await self._mock.generate(request)


def plan_body(**overrides) -> GeneratePlanRequest:
    fields = dict(
        name='Spring in Paris',
        destination='Paris',
        start_date=date(2026, 5, 1),
        end_date=date(2026, 5, 6),
        adults_count=2,
        children_count=0,
        budget_total=1500,
        budget_currency='EUR',
        travel_style='flexible',
    )
    fields.update(overrides)
    return GeneratePlanRequest(**fields)


def generation_request(**overrides) -> GenerationRequest:
    return plan_body(**overrides).to_generation_request()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def session_factory():
    engine = build_engine('sqlite://', poolclass=StaticPool)
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return PlanStore(session_factory)


@pytest.fixture
def make_client(recording_sleep):
    def _make(generator=None, cache=None, breaker=None, monitor=None, **kwargs):
        return ResilientGenerator(
            generator or MockGenerator(),
            cache or GenerationCache(),
            breaker or CircuitBreaker(),
            monitor or GenerationMonitor(),
            sleep=recording_sleep,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_pipeline(store, make_client):
    def _make(generator=None, max_active_jobs=100, **client_kwargs):
        client = make_client(generator, **client_kwargs)
        queue = JobQueue(store, client, max_active_jobs=max_active_jobs)
        return GenerationPipeline(store, client, queue)
    return _make
