"""
Redis-клиент.

Назначение:
- блокировка периодических запусков (планировщик)
- клиент создаёт процесс и передаёт в RunLock явно
"""

from __future__ import annotations

import redis


def build_redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, decode_responses=True)
