"""
config.py — Runtime settings for the itinerary generation service.

Every value is read once at import time from the environment (a local .env
file is loaded first, overriding the process environment, so development
setups behave the same regardless of how the server is started).

Only plain values live here. Components take these as constructor defaults
so tests can build isolated instances with their own numbers.
"""

import os

from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(__file__), '.env'), override=True)


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# ── Storage ──────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///itinerary_planner.db')
REDIS_URL    = os.getenv('REDIS_URL', '').strip()

# ── Generator ────────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY         = os.getenv('ANTHROPIC_API_KEY', '').strip()
GENERATOR_MODEL           = os.getenv('GENERATOR_MODEL', 'claude-haiku-4-5-20251001')
GENERATOR_TIMEOUT_SECONDS = _float('GENERATOR_TIMEOUT_SECONDS', 300.0)   # 5 minutes
GENERATOR_ATTEMPT_TIMEOUT_SECONDS = _float('GENERATOR_ATTEMPT_TIMEOUT_SECONDS', 60.0)   # one API call
GENERATOR_MAX_RETRIES     = _int('GENERATOR_MAX_RETRIES', 3)
GENERATOR_MAX_TOKENS      = _int('GENERATOR_MAX_TOKENS', 4000)
GENERATOR_TEMPERATURE     = _float('GENERATOR_TEMPERATURE', 0.7)
MOCK_GENERATOR_DELAY_SECONDS = _float('MOCK_GENERATOR_DELAY_SECONDS', 1.0)

# ── Circuit breaker ──────────────────────────────────────────────────────────
BREAKER_FAILURE_THRESHOLD = _int('BREAKER_FAILURE_THRESHOLD', 5)
BREAKER_RECOVERY_SECONDS  = _float('BREAKER_RECOVERY_SECONDS', 30.0)

# ── Response cache ───────────────────────────────────────────────────────────
CACHE_MAX_SIZE               = _int('CACHE_MAX_SIZE', 200)
CACHE_TTL_SECONDS            = _int('CACHE_TTL_SECONDS', 12 * 3600)
CACHE_SWEEP_INTERVAL_SECONDS = _int('CACHE_SWEEP_INTERVAL_SECONDS', 3600)

# ── Job queue ────────────────────────────────────────────────────────────────
MAX_ACTIVE_JOBS              = _int('MAX_ACTIVE_JOBS', 100)
JOB_RETENTION_SECONDS        = _int('JOB_RETENTION_SECONDS', 3600)
ESTIMATED_GENERATION_SECONDS = _int('ESTIMATED_GENERATION_SECONDS', 300)
STALE_PLAN_SECONDS           = _int('STALE_PLAN_SECONDS', 900)

# ── HTTP ─────────────────────────────────────────────────────────────────────
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        'CORS_ORIGINS', 'http://localhost:5000,http://127.0.0.1:5000'
    ).split(',')
    if o.strip()
]
