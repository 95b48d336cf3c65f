"""
schemas.py — Pydantic v2 models for the itinerary generation service.

Submission bodies are validated here; a custom exception handler in app.py
turns validation failures into HTTP 400 with the usual {'error': '...'}
shape.

GenerationRequest is frozen: once built for a job it is used unchanged both
to call the generator and to compute the cache fingerprint.
"""

import re
from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TravelStyle = Literal['active', 'relaxation', 'flexible']


# ── Shared validator helpers ──────────────────────────────────────────────────

def _collapse(v: str | None) -> str | None:
    """Collapse all whitespace to a single space and strip the ends.
    Returns None if the result is empty."""
    if v is None:
        return None
    s = re.sub(r'\s+', ' ', str(v)).strip()
    return s or None


# ── Plan submission ───────────────────────────────────────────────────────────

class GeneratePlanRequest(BaseModel):
    name:            str               = Field(..., min_length=1, max_length=255)
    destination:     str               = Field(..., min_length=1, max_length=255)
    start_date:      date
    end_date:        date
    adults_count:    int               = Field(..., ge=1)
    children_count:  int               = Field(..., ge=0)
    budget_total:    float | None      = Field(default=None, gt=0)
    budget_currency: str | None        = Field(default=None, min_length=3, max_length=3)
    travel_style:    TravelStyle | None = None

    @field_validator('name', 'destination', mode='before')
    @classmethod
    def collapse_single_line(cls, v: str | None) -> str | None:
        return _collapse(v)

    @field_validator('budget_currency', mode='before')
    @classmethod
    def upper_currency(cls, v: str | None) -> str | None:
        v = _collapse(v)
        return v.upper() if v else None

    @model_validator(mode='after')
    def start_before_end(self) -> 'GeneratePlanRequest':
        if self.start_date >= self.end_date:
            raise ValueError('start_date must be before end_date')
        return self

    def to_generation_request(self) -> 'GenerationRequest':
        return GenerationRequest(**self.model_dump(exclude={'name'}))


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    destination:     str
    start_date:      date
    end_date:        date
    adults_count:    int
    children_count:  int
    budget_total:    float | None = None
    budget_currency: str | None   = None
    travel_style:    str | None   = None

    @property
    def trip_days(self) -> int:
        """Nights between start and end date."""
        return (self.end_date - self.start_date).days

    def fingerprint_fields(self) -> dict:
        return {
            'destination':     self.destination.lower().strip(),
            'start_date':      self.start_date.isoformat(),
            'end_date':        self.end_date.isoformat(),
            'adults_count':    self.adults_count,
            'children_count':  self.children_count,
            'budget_total':    self.budget_total,
            'budget_currency': self.budget_currency,
            'travel_style':    self.travel_style,
        }


# ── Generator output ──────────────────────────────────────────────────────────

class ItineraryActivity(BaseModel):
    name:           str   = Field(..., min_length=1)
    description:    str
    address:        str   = Field(..., min_length=1)
    opening_hours:  str
    cost:           float = Field(..., ge=0)
    activity_order: int   = Field(..., ge=1)


class ItineraryDay(BaseModel):
    day_number: int = Field(..., ge=1)
    activities: list[ItineraryActivity]


class Itinerary(BaseModel):
    days: list[ItineraryDay]


class GenerationResult(BaseModel):
    success:            bool
    data:               Itinerary | None = None
    error:              str | None       = None
    processing_time_ms: int              = 0
    tokens_used:        int | None       = None


# ── Jobs ──────────────────────────────────────────────────────────────────────

class JobState(str, Enum):
    PENDING    = 'pending'
    PROCESSING = 'processing'
    COMPLETED  = 'completed'
    FAILED     = 'failed'


class Job(BaseModel):
    job_id:        str
    status:        JobState      = JobState.PENDING
    progress:      int           = Field(default=0, ge=0, le=100)
    plan_id:       int | None    = None
    error_message: str | None    = None
    created_at:    datetime
    updated_at:    datetime


class SubmitJobResponse(BaseModel):
    job_id:               str
    status:               Literal['processing'] = 'processing'
    estimated_completion: datetime


class JobStatusResponse(BaseModel):
    job_id:        str
    status:        JobState
    progress:      int
    plan_id:       int | None = None
    error_message: str | None = None
