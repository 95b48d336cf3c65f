"""
redis_client.py — Optional Redis connection for the generation cache.

If REDIS_URL is empty, or the server does not answer a ping, connect_redis()
returns None and the cache keeps its entries in process memory instead.
"""

import logging
from urllib.parse import urlparse, urlunparse

logger = logging.getLogger(__name__)


def connect_redis(url: str):
    """Return a connected redis.Redis client for ``url``, or None."""
    url = (url or '').strip()
    if not url:
        logger.info('REDIS_URL not set — generation cache will be kept in memory.')
        return None

    import redis

    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,   # always return str, never bytes
            socket_connect_timeout=3,
            socket_timeout=3,
        )
        client.ping()                # fail fast if unreachable
    except redis.RedisError as exc:
        logger.warning('Redis unavailable at %s (%s) — generation cache will be kept in memory.',
                       redact_url(url), exc)
        return None

    logger.info('Redis connected: %s', redact_url(url))
    return client


def redact_url(url: str) -> str:
    """Return the URL with its password replaced by ***."""
    p = urlparse(url)
    if not p.password:
        return url
    netloc = f'{p.username or ""}:***@{p.hostname}' + (f':{p.port}' if p.port else '')
    return urlunparse(p._replace(netloc=netloc))
