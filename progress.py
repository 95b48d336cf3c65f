"""
progress.py — Time-based progress estimate for status polling.

Works only from persisted data (creation time + a fixed estimation window),
so a poll can be answered even when the in-memory job table no longer knows
the job.
"""

from datetime import datetime, timedelta, timezone

MIN_PROCESSING_PROGRESS = 10
MAX_PROCESSING_PROGRESS = 95   # 100 is reserved for persisted completion


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def estimated_completion(created_at: datetime, window_seconds: float) -> datetime:
    return _as_utc(created_at) + timedelta(seconds=window_seconds)


def estimate_progress(created_at: datetime, estimated_completion_at: datetime,
                      status: str, now: datetime | None = None) -> int:
    if status == 'completed':
        return 100
    if status != 'processing':
        return 0

    now = _as_utc(now or datetime.now(timezone.utc))
    start = _as_utc(created_at)
    deadline = _as_utc(estimated_completion_at)
    if now >= deadline:
        return MAX_PROCESSING_PROGRESS

    total = (deadline - start).total_seconds()
    if total <= 0:
        return MAX_PROCESSING_PROGRESS
    elapsed = (now - start).total_seconds()
    percent = round(100 * elapsed / total)
    return max(MIN_PROCESSING_PROGRESS, min(MAX_PROCESSING_PROGRESS, percent))
