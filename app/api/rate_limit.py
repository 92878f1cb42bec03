"""
Per-IP fixed-window rate limit for the payment routes (Redis counter).
"""
import logging

import redis
from fastapi import HTTPException, Request

from app.core.config import settings
from app.storage.redis_store import get_redis_client

logger = logging.getLogger("rate_limit")


def get_client_ip(request: Request) -> str:
    """Client IP (supports X-Forwarded-For from a trusted proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.is_production:
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def check_payment_rate_limit(client_ip: str, client: redis.Redis | None = None) -> bool:
    """
    Returns True if the request is allowed. Increments the counter on each call.
    """
    try:
        client = client or get_redis_client()
        key = f"{settings.redis_key_prefix}:rate:payment:{client_ip}"
        current = client.incr(key)
        if current == 1:
            client.expire(key, settings.payment_rate_limit_window_seconds)
        if current > settings.payment_rate_limit_requests:
            logger.warning("payment_rate_limited", extra={"ip": client_ip, "attempts": current})
            return False
        return True
    except redis.RedisError as e:
        logger.warning("payment_rate_limit_redis_error", extra={"error": str(e)})
        return True  # Fail open if Redis is down


def payment_rate_limit(request: Request) -> None:
    if not check_payment_rate_limit(get_client_ip(request)):
        raise HTTPException(status_code=429, detail="Too many payment requests, please try again later.")
