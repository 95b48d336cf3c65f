"""
monitoring.py — Operational metrics for generator calls.

One GenerationMonitor is owned by the pipeline. It keeps counters, a running
average of processing time, token usage and the last 100 errors, and logs a
line for every recorded call.
"""

import logging
import time
import uuid
from collections import deque
from datetime import datetime, timezone

from schemas import GenerationRequest

logger = logging.getLogger(__name__)

MAX_ERROR_LOG      = 100
RECENT_ERROR_COUNT = 10
RECENT_WINDOW_S    = 5 * 60
HEALTHY_SUCCESS_RATE = 80.0


class GenerationMonitor:
    def __init__(self, clock=time.time):
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self.request_count = 0
        self.success_count = 0
        self.error_count = 0
        self.average_processing_time = 0.0
        self.total_tokens_used = 0
        self.last_request_time: datetime | None = None
        self._errors: deque = deque(maxlen=MAX_ERROR_LOG)

    def record_success(self, request: GenerationRequest, processing_time_ms: int,
                       tokens_used: int | None = None, model: str | None = None) -> None:
        self.request_count += 1
        self.success_count += 1
        self.last_request_time = datetime.now(timezone.utc)
        self.total_tokens_used += tokens_used or 0
        n = self.request_count
        self.average_processing_time = (
            self.average_processing_time * (n - 1) + processing_time_ms
        ) / n

        logger.info('Generator: plan for %s generated in %d ms (tokens=%s model=%s)',
                    request.destination, processing_time_ms, tokens_used or 0, model or 'unknown')

    def record_error(self, request: GenerationRequest, message: str,
                     status_code: int | None = None, request_id: str | None = None) -> None:
        self.request_count += 1
        self.error_count += 1
        self.last_request_time = datetime.now(timezone.utc)
        entry = {
            'timestamp':   self._clock(),
            'error':       message,
            'status_code': status_code,
            'request_id':  request_id or f'req_{uuid.uuid4().hex[:12]}',
            'destination': request.destination,
        }
        self._errors.append(entry)

        logger.error('Generator: failed to generate plan for %s: %s (status=%s request_id=%s)',
                     request.destination, message, status_code, entry['request_id'])

    def success_rate(self) -> float:
        if self.request_count == 0:
            return 0.0
        return self.success_count / self.request_count * 100

    def average_tokens_per_request(self) -> float:
        if self.request_count == 0:
            return 0.0
        return self.total_tokens_used / self.request_count

    def recent_errors(self) -> list[dict]:
        return list(self._errors)[-RECENT_ERROR_COUNT:]

    def _errors_in_window(self) -> int:
        cutoff = self._clock() - RECENT_WINDOW_S
        return sum(1 for e in self.recent_errors() if e['timestamp'] >= cutoff)

    def is_healthy(self) -> bool:
        if self.request_count == 0:
            return True
        return self.success_rate() >= HEALTHY_SUCCESS_RATE and self._errors_in_window() == 0

    def get_metrics(self) -> dict:
        return {
            'request_count':           self.request_count,
            'success_count':           self.success_count,
            'error_count':             self.error_count,
            'average_processing_time': round(self.average_processing_time, 2),
            'total_tokens_used':       self.total_tokens_used,
            'last_request_time':       self.last_request_time.isoformat() if self.last_request_time else None,
            'errors': [
                {**e, 'timestamp': datetime.fromtimestamp(e['timestamp'], timezone.utc).isoformat()}
                for e in self._errors
            ],
        }

    def get_health_status(self) -> dict:
        return {
            'healthy':                 self.is_healthy(),
            'success_rate':            round(self.success_rate(), 2),
            'recent_errors':           self._errors_in_window(),
            'average_processing_time': round(self.average_processing_time, 2),
        }
