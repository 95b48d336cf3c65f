"""
plans.py — Plan generation router.

Routes:
  POST /plans/generate                   — validate, persist and queue a plan (202)
  GET  /plans/generate/{job_id}/status   — poll generation status

Submission returns in well under a second; the client then polls the status
route roughly every 2 seconds until status is 'completed' or 'failed'.
"""

import logging
import re

from fastapi import APIRouter, Depends, HTTPException, Request

from errors import PersistenceError, QueueFullError
from pipeline import GenerationPipeline
from schemas import GeneratePlanRequest

logger = logging.getLogger(__name__)

plans_router = APIRouter(prefix='/plans', tags=['plans'])

_UUID_RE = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$', re.IGNORECASE,
)
QUEUE_FULL_RETRY_AFTER = 30   # seconds


def get_pipeline(request: Request) -> GenerationPipeline:
    """FastAPI dependency — the pipeline built at startup (overridden in tests)."""
    pipeline = getattr(request.app.state, 'pipeline', None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail='Generation service is starting up')
    return pipeline


# ── Routes ────────────────────────────────────────────────────────────────────

@plans_router.post('/generate', status_code=202)
async def generate_plan(
    body: GeneratePlanRequest,
    pipeline: GenerationPipeline = Depends(get_pipeline),
):
    """
    POST /plans/generate — accept a plan request and queue its generation.

    Returns { job_id, status: 'processing', estimated_completion }.
    """
    try:
        accepted = await pipeline.submit_job(body)
    except QueueFullError as exc:
        logger.warning('Rejected plan for %r: %s', body.destination, exc)
        raise HTTPException(
            status_code=503,
            detail=str(exc),
            headers={'Retry-After': str(QUEUE_FULL_RETRY_AFTER)},
        )
    except PersistenceError as exc:
        logger.error('Could not create plan for %r: %s', body.destination, exc)
        raise HTTPException(status_code=500, detail='Failed to create plan.')

    logger.info('Job %s accepted for %s %s..%s', accepted.job_id[:8], body.destination,
                body.start_date, body.end_date)
    return accepted.model_dump(mode='json')


@plans_router.get('/generate/{job_id}/status')
async def generation_status(
    job_id: str,
    pipeline: GenerationPipeline = Depends(get_pipeline),
):
    """
    GET /plans/generate/{job_id}/status

    Returns:
        { job_id, status: 'pending'|'processing'|'completed'|'failed',
          progress: 0–100,
          plan_id:       int | null,   # only when completed
          error_message: str | null }  # only when failed
    """
    if not _UUID_RE.match(job_id):
        raise HTTPException(status_code=400, detail='Invalid job ID format. Must be a valid UUID.')

    try:
        status = await pipeline.poll_status(job_id)
    except PersistenceError:
        raise HTTPException(status_code=500,
                            detail='Internal server error occurred while processing request.')

    if status is None:
        raise HTTPException(status_code=404, detail='Plan with specified job ID not found.')
    return status.model_dump(mode='json')
