"""
Блокировка периодических запусков.

Зачем нужно:
- запуск планировщика может не уложиться в период / процесс перезапустился
- два пересекающихся запуска поставили бы напоминания дважды

Реализация:
- Redis: SET NX EX с токеном, снятие — compare-and-delete (Lua)
- QUEUE_MODE=inline: in-process словарь с TTL (локальный запуск / тесты)
"""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

import redis

from competition_admission.common.logging import get_project_logger

log = get_project_logger()

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RunLock:
    def __init__(self, *, mode: str = "redis", client: redis.Redis | None = None) -> None:
        self.mode = (mode or "").strip().lower()
        if self.mode != "inline" and client is None:
            raise ValueError("redis client is required unless mode=inline")
        self._client = client
        self._local: dict[str, tuple[str, float]] = {}
        self._local_guard = threading.Lock()

    @staticmethod
    def _key(name: str) -> str:
        return f"lock:{name}"

    def acquire(self, name: str, ttl_sec: int) -> str | None:
        """
        Возвращает токен владельца или None, если блокировка занята.
        """
        key = self._key(name)
        token = secrets.token_hex(8)
        ttl = max(1, int(ttl_sec))

        if self.mode == "inline":
            now = time.monotonic()
            with self._local_guard:
                held = self._local.get(key)
                if held is not None and held[1] > now:
                    return None
                self._local[key] = (token, now + ttl)
            return token

        ok = self._client.set(name=key, value=token, nx=True, ex=ttl)
        return token if ok else None

    def release(self, name: str, token: str) -> None:
        key = self._key(name)
        if self.mode == "inline":
            with self._local_guard:
                held = self._local.get(key)
                if held is not None and held[0] == token:
                    self._local.pop(key, None)
            return
        self._client.eval(_RELEASE_SCRIPT, 1, key, token)

    @contextmanager
    def hold(self, name: str, ttl_sec: int) -> Iterator[bool]:
        token = self.acquire(name, ttl_sec)
        if token is None:
            log.info("run_lock_busy", extra={"payload": {"lock": name}})
            yield False
            return
        try:
            yield True
        finally:
            self.release(name, token)
