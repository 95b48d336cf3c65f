"""
SQLAlchemy ORM models for the itinerary generation service.

Four models:
  Plan                — submitted trip parameters + generation status, keyed by job_id
  Attraction          — deduplicated places (unique on name + address)
  PlanActivity        — one scheduled activity of a generated itinerary
  GenerationErrorLog  — failure messages recorded against a plan

Default database: SQLite (itinerary_planner.db).
Production: set DATABASE_URL to a PostgreSQL connection string.
"""

import json
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

PLAN_PROCESSING = 'processing'
PLAN_COMPLETED  = 'completed'
PLAN_FAILED     = 'failed'


def _utcnow():
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


# db is kept as a module-level name so database.py and manage.py can reference
# db.metadata for table creation.
db = declarative_base()


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

class Plan(db):
    __tablename__ = 'plans'

    id     = Column(Integer, primary_key=True)
    job_id = Column(String(36), unique=True, nullable=False, index=True)
    name   = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=PLAN_PROCESSING)  # processing | completed | failed

    # ── Request parameters ───────────────────────────────────────────────────
    destination     = Column(String(255), nullable=False)
    start_date      = Column(Date,        nullable=False)
    end_date        = Column(Date,        nullable=False)
    adults_count    = Column(Integer,     nullable=False)
    children_count  = Column(Integer,     nullable=False, default=0)
    budget_total    = Column(Float,       nullable=True)
    budget_currency = Column(String(3),   nullable=True)
    travel_style    = Column(String(20),  nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    activities = relationship('PlanActivity', backref='plan', lazy='dynamic',
                              cascade='all, delete-orphan')
    errors     = relationship('GenerationErrorLog', backref='plan', lazy='dynamic',
                              cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id':              self.id,
            'job_id':          self.job_id,
            'name':            self.name,
            'status':          self.status,
            'destination':     self.destination,
            'start_date':      self.start_date.isoformat() if self.start_date else None,
            'end_date':        self.end_date.isoformat()   if self.end_date   else None,
            'adults_count':    self.adults_count,
            'children_count':  self.children_count,
            'budget_total':    self.budget_total,
            'budget_currency': self.budget_currency,
            'travel_style':    self.travel_style,
            'created_at':      self.created_at.isoformat() if self.created_at else None,
            'updated_at':      self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<Plan #{self.id} {self.destination!r} status={self.status}>'


# ---------------------------------------------------------------------------
# Attraction
# ---------------------------------------------------------------------------

class Attraction(db):
    __tablename__ = 'attractions'
    __table_args__ = (UniqueConstraint('name', 'address', name='uq_attraction_name_address'),)

    id          = Column(Integer, primary_key=True)
    name        = Column(String(255), nullable=False)
    address     = Column(String(500), nullable=False)
    description = Column(Text,        nullable=True)

    def __repr__(self):
        return f'<Attraction {self.name!r}>'


# ---------------------------------------------------------------------------
# PlanActivity
# ---------------------------------------------------------------------------

class PlanActivity(db):
    __tablename__ = 'plan_activities'

    id             = Column(Integer, primary_key=True)
    plan_id        = Column(Integer, ForeignKey('plans.id'), nullable=False, index=True)
    attraction_id  = Column(Integer, ForeignKey('attractions.id'), nullable=False)
    day_number     = Column(Integer, nullable=False)
    activity_order = Column(Integer, nullable=False)
    custom_desc    = Column(Text,    nullable=True)
    opening_hours  = Column(String(50), nullable=True)
    cost           = Column(Float,   nullable=True)

    attraction = relationship('Attraction')

    def to_dict(self):
        return {
            'id':             self.id,
            'plan_id':        self.plan_id,
            'day_number':     self.day_number,
            'activity_order': self.activity_order,
            'name':           self.attraction.name    if self.attraction else None,
            'address':        self.attraction.address if self.attraction else None,
            'description':    self.custom_desc,
            'opening_hours':  self.opening_hours,
            'cost':           self.cost,
        }


# ---------------------------------------------------------------------------
# GenerationErrorLog
# ---------------------------------------------------------------------------

class GenerationErrorLog(db):
    __tablename__ = 'generation_errors'

    id            = Column(Integer, primary_key=True)
    plan_id       = Column(Integer, ForeignKey('plans.id'), nullable=False, index=True)
    error_message = Column(Text, nullable=False)
    error_details = Column(Text, nullable=True)   # JSON object
    created_at    = Column(DateTime, nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            'id':            self.id,
            'plan_id':       self.plan_id,
            'error_message': self.error_message,
            'error_details': json.loads(self.error_details) if self.error_details else None,
            'created_at':    self.created_at.isoformat() if self.created_at else None,
        }
