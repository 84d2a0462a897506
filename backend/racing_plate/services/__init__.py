"""Service layer and the per-application handle that carries its stores.

Stateful collaborators (code store, rate limiter, notifier) are built once by
``create_app`` and stored on ``app.extensions`` rather than as module globals,
so each app instance (and each test) gets its own.
"""

from dataclasses import dataclass
from typing import Any

from flask import current_app

EXTENSION_KEY = 'racing_plate'


@dataclass
class Services:
    codes: Any
    rate_limiter: Any
    notifier: Any


def build_services(config) -> Services:
    from racing_plate.services.auth.codes import MemoryCodeStore, RedisCodeStore
    from racing_plate.services.auth.notifications import notifier_from_config
    from racing_plate.services.auth.rate_limit import MemoryRateLimiter, RedisRateLimiter

    ttl = int(config.get('VERIFICATION_CODE_TTL_SEC', 600))
    limit = int(config.get('AUTH_RATE_LIMIT_ATTEMPTS', 5))
    window = int(config.get('AUTH_RATE_LIMIT_WINDOW_SEC', 900))

    redis_url = config.get('REDIS_URL')
    if redis_url:
        import redis
        client = redis.Redis.from_url(redis_url)
        codes = RedisCodeStore(client, ttl_seconds=ttl)
        limiter = RedisRateLimiter(client, limit=limit, window_seconds=window)
    else:
        codes = MemoryCodeStore(ttl_seconds=ttl)
        limiter = MemoryRateLimiter(limit=limit, window_seconds=window)

    return Services(codes=codes, rate_limiter=limiter, notifier=notifier_from_config(config))


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
