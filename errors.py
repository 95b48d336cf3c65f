"""
errors.py — Typed error taxonomy for the generation pipeline.

Retryability is a property of the exception class (``retryable``), never
something inferred from message text.
"""


class PipelineError(Exception):
    """Base class for every error raised inside the pipeline."""

    retryable = False


class ValidationError(PipelineError):
    """Malformed or missing request fields."""


class GeneratorError(PipelineError):
    """The external generator rejected the call or returned a failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientServiceError(GeneratorError):
    """HTTP 429, HTTP >= 500 or a transport problem — safe to retry."""

    retryable = True


class GeneratorTimeoutError(TransientServiceError):
    """A single generator attempt did not answer in time."""


class InvalidResponseError(GeneratorError):
    """The generator answered, but not with a usable itinerary."""


class CircuitOpenError(PipelineError):
    def __init__(self, retry_after: float):
        super().__init__('Circuit breaker is OPEN - service temporarily unavailable')
        self.retry_after = max(0.0, retry_after)


class PersistenceError(PipelineError):
    """Reading the request or writing results to storage failed."""


class QueueFullError(PipelineError):
    def __init__(self, limit: int):
        super().__init__(f'Generation queue is full ({limit} active jobs). Please try again later.')
        self.limit = limit


class DuplicateJobError(PipelineError):
    def __init__(self, job_id: str):
        super().__init__(f'Job {job_id} has already been submitted')
        self.job_id = job_id


def status_code_of(exc: BaseException) -> int | None:
    return getattr(exc, 'status_code', None)
