"""
plan_store.py — Persistence gateway for plan generation.

The job queue talks to storage only through PlanStore:

  create_plan(body)                     — insert a 'processing' plan row with a fresh job_id
  fetch_request_for_job(job_id)         — load the GenerationRequest for a job (or None)
  find_plan_id(job_id)                  — plan id lookup used on the failure path
  save_generated_itinerary(plan_id, it) — upsert attractions + insert activities
  update_plan_status(plan_id, status)   — processing → completed | failed
  record_failure(plan_id, message)      — append to the generation_errors log
  get_status_row(job_id)                — data needed to answer a status poll
  fail_stale_plans(cutoff, exclude)     — watchdog for plans orphaned by a restart

Every method runs its SQLAlchemy work in the thread pool and raises
PersistenceError when the database does.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from errors import PersistenceError
from models import (
    PLAN_FAILED, PLAN_PROCESSING, Attraction, GenerationErrorLog, Plan, PlanActivity,
)
from schemas import GeneratePlanRequest, GenerationRequest, Itinerary

logger = logging.getLogger(__name__)


class StoredRequest(NamedTuple):
    plan_id: int
    request: GenerationRequest


class PlanStatusRow(NamedTuple):
    plan_id:       int
    status:        str
    created_at:    datetime
    error_message: str | None


def _request_from_plan(plan: Plan) -> GenerationRequest:
    return GenerationRequest(
        destination     = plan.destination,
        start_date      = plan.start_date,
        end_date        = plan.end_date,
        adults_count    = plan.adults_count,
        children_count  = plan.children_count,
        budget_total    = plan.budget_total,
        budget_currency = plan.budget_currency,
        travel_style    = plan.travel_style,
    )


def _plan_by_job(session: Session, job_id: str) -> Plan | None:
    return session.query(Plan).filter_by(job_id=job_id).one_or_none()


def _upsert_attraction(session: Session, name: str, address: str, description: str) -> Attraction:
    attraction = session.query(Attraction).filter_by(name=name, address=address).one_or_none()
    if attraction is None:
        attraction = Attraction(name=name, address=address, description=description)
        session.add(attraction)
        session.flush()
    elif description and attraction.description != description:
        attraction.description = description
    return attraction


class PlanStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def _run(self, what: str, fn):
        def _call():
            with self._session_factory() as session:
                try:
                    return fn(session)
                except SQLAlchemyError:
                    session.rollback()
                    raise

        try:
            return await run_in_threadpool(_call)
        except SQLAlchemyError as exc:
            logger.error('Database error while trying to %s: %s', what, exc)
            raise PersistenceError(f'Failed to {what}') from exc

    # ── Submission ────────────────────────────────────────────────────────────

    async def create_plan(self, body: GeneratePlanRequest) -> tuple[int, str, datetime]:
        job_id = str(uuid.uuid4())

        def _create(session: Session):
            plan = Plan(
                job_id          = job_id,
                name            = body.name,
                status          = PLAN_PROCESSING,
                destination     = body.destination,
                start_date      = body.start_date,
                end_date        = body.end_date,
                adults_count    = body.adults_count,
                children_count  = body.children_count,
                budget_total    = body.budget_total,
                budget_currency = body.budget_currency,
                travel_style    = body.travel_style,
                created_at      = datetime.now(timezone.utc),
            )
            session.add(plan)
            session.commit()
            return plan.id, plan.created_at

        plan_id, created_at = await self._run('create plan', _create)
        logger.info('Plan created: id=%d job=%s %r', plan_id, job_id[:8], body.destination)
        return plan_id, job_id, created_at

    # ── Worker side ───────────────────────────────────────────────────────────

    async def fetch_request_for_job(self, job_id: str) -> StoredRequest | None:
        def _fetch(session: Session):
            plan = _plan_by_job(session, job_id)
            if plan is None:
                return None
            return StoredRequest(plan.id, _request_from_plan(plan))

        return await self._run('load plan request', _fetch)

    async def find_plan_id(self, job_id: str) -> int | None:
        def _find(session: Session):
            plan = _plan_by_job(session, job_id)
            return plan.id if plan else None

        return await self._run('look up plan', _find)

    async def save_generated_itinerary(self, plan_id: int, itinerary: Itinerary) -> int:
        """Persist every activity of the itinerary; returns the number saved."""
        def _save(session: Session):
            count = 0
            for day in itinerary.days:
                for activity in day.activities:
                    attraction = _upsert_attraction(
                        session, activity.name, activity.address, activity.description,
                    )
                    session.add(PlanActivity(
                        plan_id        = plan_id,
                        attraction_id  = attraction.id,
                        day_number     = day.day_number,
                        activity_order = activity.activity_order,
                        custom_desc    = activity.description,
                        opening_hours  = activity.opening_hours,
                        cost           = activity.cost,
                    ))
                    count += 1
            session.commit()
            return count

        saved = await self._run('save activities', _save)
        logger.info('Plan %d: saved %d activities', plan_id, saved)
        return saved

    async def update_plan_status(self, plan_id: int, status: str) -> None:
        def _update(session: Session):
            plan = session.get(Plan, plan_id)
            if plan is None:
                raise PersistenceError(f'Plan {plan_id} not found')
            plan.status = status
            plan.updated_at = datetime.now(timezone.utc)
            session.commit()

        await self._run('update plan status', _update)

    async def record_failure(self, plan_id: int, message: str, details: dict | None = None) -> None:
        def _record(session: Session):
            session.add(GenerationErrorLog(
                plan_id       = plan_id,
                error_message = message,
                error_details = json.dumps(details) if details else None,
            ))
            session.commit()

        await self._run('record generation error', _record)

    # ── Polling / maintenance ─────────────────────────────────────────────────

    async def get_status_row(self, job_id: str) -> PlanStatusRow | None:
        def _query(session: Session):
            plan = _plan_by_job(session, job_id)
            if plan is None:
                return None
            error_message = None
            if plan.status == PLAN_FAILED:
                latest = (plan.errors
                          .order_by(GenerationErrorLog.created_at.desc(), GenerationErrorLog.id.desc())
                          .first())
                error_message = latest.error_message if latest else None
            return PlanStatusRow(plan.id, plan.status, plan.created_at, error_message)

        return await self._run('read plan status', _query)

    async def fail_stale_plans(self, cutoff: datetime, exclude_job_ids=(), message: str = '') -> int:
        """Mark 'processing' plans created before cutoff as failed; returns the count."""
        message = message or 'Plan generation was interrupted. Please try again.'
        excluded = set(exclude_job_ids)

        def _sweep(session: Session):
            # SQLite stores naive datetimes, so compare in naive UTC there.
            bound = cutoff
            if session.bind.dialect.name == 'sqlite' and cutoff.tzinfo is not None:
                bound = cutoff.astimezone(timezone.utc).replace(tzinfo=None)
            stale = (session.query(Plan)
                     .filter(Plan.status == PLAN_PROCESSING, Plan.created_at < bound)
                     .all())
            failed = 0
            now = datetime.now(timezone.utc)
            for plan in stale:
                if plan.job_id in excluded:
                    continue
                plan.status = PLAN_FAILED
                plan.updated_at = now
                session.add(GenerationErrorLog(plan_id=plan.id, error_message=message))
                failed += 1
            session.commit()
            return failed

        failed = await self._run('fail stale plans', _sweep)
        if failed:
            logger.warning('Watchdog: marked %d stale plan(s) as failed', failed)
        return failed
