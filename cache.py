import logging
import os
import time
from typing import Generator

import redis
from fastapi import Depends, HTTPException, Request, status

logger = logging.getLogger(__name__)

MISSING_MARKER = "NULL"
MISSING_TTL_SECONDS = 60


def get_redis_client_instance() -> redis.Redis:
    """
    Returns a new Redis client instance.
    This function is intended to be called once during application startup
    or for testing purposes.
    """
    REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.environ.get("REDIS_PORT", 6379))
    REDIS_DB = int(os.environ.get("REDIS_DB", 0))
    client = redis.Redis(
        host=REDIS_HOST, port=REDIS_PORT, db=REDIS_DB, decode_responses=True
    )
    try:
        client.ping()
    except redis.exceptions.ConnectionError:
        logger.exception(
            "Redis connection failed", extra={"host": REDIS_HOST, "port": REDIS_PORT}
        )
        raise
    return client


def get_redis_db() -> Generator[redis.Redis, None, None]:
    """
    Dependency that provides a Redis client and handles its closing.
    """
    redis_client = get_redis_client_instance()
    try:
        yield redis_client
    finally:
        if redis_client:
            redis_client.close()


def peer_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, for click metadata only; clients can set it."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return peer_ip(request)


def rate_limit(
    request: Request, redis_client: redis.Redis = Depends(get_redis_db)
) -> None:
    """
    Fixed-window limiter keyed by the socket peer address.
    Applied to every /api route.
    """
    window = int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", 15 * 60))
    max_requests = int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", 100))

    ip = peer_ip(request)
    window_start = int(time.time()) // window
    key = f"rate_limit:{ip}:{window_start}"

    count = redis_client.incr(key)
    if count == 1:
        redis_client.expire(key, window)

    if count > max_requests:
        logger.warning("Rate limit exceeded", extra={"ip": ip, "count": count})
        retry_after = window - int(time.time()) % window
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests from this IP, please try again later.",
            headers={"Retry-After": str(retry_after)},
        )


def _missing_key(short_code: str) -> str:
    return f"short_url:{short_code}"


def is_known_missing(redis_client: redis.Redis, short_code: str) -> bool:
    return redis_client.get(_missing_key(short_code)) == MISSING_MARKER


def mark_missing(redis_client: redis.Redis, short_code: str) -> None:
    # Stored as a plain string with a short TTL to absorb repeated misses
    redis_client.set(_missing_key(short_code), MISSING_MARKER, ex=MISSING_TTL_SECONDS)


def forget_missing(redis_client: redis.Redis, short_code: str) -> None:
    redis_client.delete(_missing_key(short_code))
