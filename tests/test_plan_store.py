from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import plan_body
from errors import PersistenceError
from generators import MockGenerator
from models import Attraction, GenerationErrorLog, Plan, PlanActivity
from plan_store import PlanStore


@pytest.mark.anyio
async def test_create_plan_starts_processing(store, session_factory):
    plan_id, job_id, created_at = await store.create_plan(plan_body(budget_currency='eur'))

    assert len(job_id) == 36
    assert created_at.tzinfo is not None
    with session_factory() as session:
        plan = session.get(Plan, plan_id)
        assert plan.status == 'processing'
        assert plan.job_id == job_id
        assert plan.budget_currency == 'EUR'


@pytest.mark.anyio
async def test_fetch_request_round_trips_fields(store):
    body = plan_body(children_count=1, travel_style='relaxation')
    plan_id, job_id, _ = await store.create_plan(body)

    stored = await store.fetch_request_for_job(job_id)
    assert stored.plan_id == plan_id
    assert stored.request == body.to_generation_request()
    assert await store.fetch_request_for_job('missing') is None
    assert await store.find_plan_id(job_id) == plan_id


@pytest.mark.anyio
async def test_saved_itinerary_reuses_attractions(store, session_factory):
    body = plan_body()
    itinerary = MockGenerator().build_itinerary(body.to_generation_request())
    first_id, _, _ = await store.create_plan(body)
    second_id, _, _ = await store.create_plan(body)

    saved = await store.save_generated_itinerary(first_id, itinerary)
    await store.save_generated_itinerary(second_id, itinerary)

    assert saved == sum(len(day.activities) for day in itinerary.days)
    with session_factory() as session:
        assert session.query(Attraction).count() == 4
        assert session.query(PlanActivity).filter_by(plan_id=second_id).count() == saved
        first = session.query(PlanActivity).filter_by(plan_id=first_id, day_number=1,
                                                      activity_order=1).one()
        assert first.to_dict()['name'] == itinerary.days[0].activities[0].name


@pytest.mark.anyio
async def test_failed_status_row_carries_latest_error(store):
    plan_id, job_id, _ = await store.create_plan(plan_body())
    await store.record_failure(plan_id, 'first', {'attempt': 1})
    await store.record_failure(plan_id, 'second')
    await store.update_plan_status(plan_id, 'failed')

    row = await store.get_status_row(job_id)
    assert row.status == 'failed'
    assert row.error_message == 'second'
    assert await store.get_status_row('missing') is None


@pytest.mark.anyio
async def test_update_status_of_missing_plan_raises(store):
    with pytest.raises(PersistenceError):
        await store.update_plan_status(999, 'completed')


@pytest.mark.anyio
async def test_database_errors_become_persistence_errors():
    session = MagicMock()
    session.__enter__.return_value = session
    session.query.side_effect = OperationalError('SELECT 1', {}, Exception('database is locked'))
    store = PlanStore(lambda: session)

    with pytest.raises(PersistenceError, match='Failed to load plan request'):
        await store.fetch_request_for_job('any')
    session.rollback.assert_called_once()


@pytest.mark.anyio
async def test_stale_plans_marked_failed(store, session_factory):
    _, stale_job, _ = await store.create_plan(plan_body(name='stale'))
    _, active_job, _ = await store.create_plan(plan_body(name='active'))
    done_id, done_job, _ = await store.create_plan(plan_body(name='done'))
    await store.update_plan_status(done_id, 'completed')

    cutoff = datetime.now(timezone.utc) + timedelta(seconds=1)
    assert await store.fail_stale_plans(cutoff, exclude_job_ids={active_job}) == 1

    stale = await store.get_status_row(stale_job)
    assert stale.status == 'failed'
    assert 'interrupted' in stale.error_message
    assert (await store.get_status_row(active_job)).status == 'processing'
    assert (await store.get_status_row(done_job)).status == 'completed'

    with session_factory() as session:
        assert session.query(GenerationErrorLog).count() == 1


@pytest.mark.anyio
async def test_recent_plans_are_not_stale(store):
    _, job_id, _ = await store.create_plan(plan_body())
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=15)

    assert await store.fail_stale_plans(cutoff) == 0
    assert (await store.get_status_row(job_id)).status == 'processing'
