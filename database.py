"""
database.py — SQLAlchemy engine and session management.

Provides:
  build_engine()   — engine factory (SQLite gets WAL + relaxed thread checks)
  engine           — the shared engine for DATABASE_URL
  SessionLocal     — sessionmaker bound to the engine
  init_db()        — create all tables; called once at startup and by manage.py

All SQLAlchemy calls remain synchronous. PlanStore wraps them with
starlette.concurrency.run_in_threadpool so the event loop never blocks.
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from config import DATABASE_URL
from models import db

logger = logging.getLogger(__name__)


def _safe_db_url(url: str) -> str:
    """Hosted PostgreSQL providers sometimes inject postgres:// instead of postgresql://."""
    if url.startswith('postgres://'):
        url = 'postgresql://' + url[len('postgres://'):]
    return url


def build_engine(url: str, **kwargs) -> Engine:
    url = _safe_db_url(url)
    connect_args: dict = {}
    if url.startswith('sqlite'):
        connect_args = {'timeout': 15, 'check_same_thread': False}

    eng = create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        **kwargs,
    )

    # WAL allows concurrent readers + one writer; no-op for in-memory SQLite.
    if url.startswith('sqlite') and ':memory:' not in url and url != 'sqlite://':
        @event.listens_for(eng, 'connect')
        def _set_sqlite_wal(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute('PRAGMA journal_mode=WAL')
            cursor.close()

    return eng


def build_session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(
        bind=eng,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,   # rows are read after commit from worker coroutines
    )


engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)


def init_db(eng: Engine | None = None) -> None:
    """Create all tables that do not exist yet."""
    eng = eng or engine
    db.metadata.create_all(eng)
    logger.info('Database tables ready (%s)', eng.url.render_as_string(hide_password=True))
