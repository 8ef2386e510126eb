from __future__ import annotations

import pytest

from competition_admission.queue.locks import RunLock


class _FakeRedis:
    """Минимальный SET NX / compare-and-delete поверх словаря."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def set(self, name: str, value: str, nx: bool = False, ex: int | None = None):
        if nx and name in self.data:
            return None
        self.data[name] = value
        self.ttls[name] = ex
        return True

    def eval(self, script: str, numkeys: int, key: str, token: str) -> int:
        if self.data.get(key) == token:
            del self.data[key]
            return 1
        return 0


def test_inline_lock_is_exclusive_until_released() -> None:
    lock = RunLock(mode="inline")
    token = lock.acquire("scheduler:reminders", 60)
    assert token is not None
    assert lock.acquire("scheduler:reminders", 60) is None
    assert lock.acquire("scheduler:other", 60) is not None

    lock.release("scheduler:reminders", "not-the-owner")
    assert lock.acquire("scheduler:reminders", 60) is None

    lock.release("scheduler:reminders", token)
    assert lock.acquire("scheduler:reminders", 60) is not None


def test_hold_yields_false_when_busy() -> None:
    lock = RunLock(mode="inline")
    with lock.hold("job", 60) as first:
        with lock.hold("job", 60) as second:
            assert first is True
            assert second is False
    with lock.hold("job", 60) as again:
        assert again is True


def test_redis_lock_uses_set_nx_ex() -> None:
    client = _FakeRedis()
    lock = RunLock(mode="redis", client=client)

    token = lock.acquire("job", 120)
    assert client.data == {"lock:job": token}
    assert client.ttls["lock:job"] == 120
    assert lock.acquire("job", 120) is None

    lock.release("job", token)
    assert client.data == {}


def test_redis_mode_requires_client() -> None:
    with pytest.raises(ValueError):
        RunLock(mode="redis")
