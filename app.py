#!/usr/bin/env python3
"""
Itinerary Planner — Backend API (FastAPI, async)

A plan submission is accepted immediately and generated in the background:
- POST /plans/generate persists the plan and queues a job (202 + job_id)
- a single worker task drives each job through the resilient generator
  (response cache → circuit breaker → bounded exponential retry)
- GET /plans/generate/{job_id}/status is polled until the job finishes
- /health and /monitoring/* expose breaker, cache and generator metrics

Run with any ASGI server, e.g. `uvicorn app:app`.
"""

import asyncio
import contextlib
import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

import config
from database import SessionLocal, init_db
from plan_store import PlanStore
from pipeline import GenerationPipeline, build_pipeline
from plans import get_pipeline, plans_router
from redis_client import connect_redis

# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(title='Itinerary Planner API', docs_url=None, redoc_url=None)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


# ── Map errors → { "error": "..." } ──────────────────────────────────────────
# FastAPI's default shape is { "detail": ... }; clients expect "error".
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={'error': exc.detail},
                        headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = '.'.join(str(part) for part in err.get('loc', ()) if part != 'body')
        problems.append(f'{field}: {err.get("msg")}' if field else str(err.get('msg')))
    return JSONResponse(status_code=400, content={'error': '; '.join(problems) or 'Invalid request'})


app.include_router(plans_router)

_maintenance_task: asyncio.Task | None = None

# ---------------------------------------------------------------------------
# Startup / shutdown
# ---------------------------------------------------------------------------

@app.on_event('startup')
async def startup():
    global _maintenance_task

    await run_in_threadpool(init_db)
    redis_client = await run_in_threadpool(connect_redis, config.REDIS_URL)

    pipeline = build_pipeline(PlanStore(SessionLocal), redis_client=redis_client)
    app.state.pipeline = pipeline
    pipeline.start()

    # Plans left 'processing' by a previous process can never finish.
    failed = await pipeline.fail_stale_plans()
    if failed:
        logger.warning('Startup: %d interrupted plan(s) marked as failed', failed)

    _maintenance_task = asyncio.create_task(_maintenance_loop())
    logger.info('Generation pipeline ready (model=%s, redis=%s)',
                pipeline.client.generator.model, 'on' if redis_client is not None else 'off')


@app.on_event('shutdown')
async def shutdown():
    if _maintenance_task is not None:
        _maintenance_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _maintenance_task
    pipeline = getattr(app.state, 'pipeline', None)
    if pipeline is not None:
        await pipeline.stop()


async def _maintenance_loop() -> None:
    while True:
        await asyncio.sleep(config.CACHE_SWEEP_INTERVAL_SECONDS)
        try:
            summary = await app.state.pipeline.run_maintenance()
            logger.info('Maintenance: %s', summary)
        except Exception as exc:
            logger.error('Maintenance run failed: %s', exc, exc_info=True)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get('/health')
async def health(request: Request):
    pipeline = getattr(request.app.state, 'pipeline', None)
    if pipeline is None:
        return {'status': 'starting'}
    return {'status': 'ok' if pipeline.get_health_status()['healthy'] else 'degraded'}


@app.get('/monitoring/health')
async def monitoring_health(pipeline: GenerationPipeline = Depends(get_pipeline)):
    return pipeline.get_health_status()


@app.get('/monitoring/circuit-breaker')
async def monitoring_circuit_breaker(pipeline: GenerationPipeline = Depends(get_pipeline)):
    return pipeline.get_circuit_breaker_stats()


@app.get('/monitoring/cache')
async def monitoring_cache(pipeline: GenerationPipeline = Depends(get_pipeline)):
    return pipeline.get_cache_stats()
