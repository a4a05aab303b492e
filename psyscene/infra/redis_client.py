from __future__ import annotations

import redis

from psyscene.config import get_settings


def get_redis_url() -> str:
    return get_settings().redis_url


def create_redis() -> redis.Redis:
    # decode_responses=True => stream fields come back as str
    return redis.Redis.from_url(get_redis_url(), decode_responses=True)
