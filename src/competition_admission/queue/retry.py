"""
Retry/DLQ политика для задач очереди.

Назначение:
- решить по счётчику попыток: повтор с backoff или DLQ
- экспоненциальный backoff: base * 2^(attempts-1)
  (base=2s → 2s, 4s, 8s ...)

Важно:
- attempts — число УЖЕ сделанных попыток (инкрементируется при захвате задачи)
- задержка не "спится" в воркере: задача переносится через run_at
"""

from __future__ import annotations

from dataclasses import dataclass


def backoff_delay_sec(*, attempts: int, backoff_base_sec: float) -> float:
    return float(backoff_base_sec) * (2 ** max(0, int(attempts) - 1))


@dataclass(frozen=True)
class RetryDecision:
    dead_letter: bool
    delay_sec: float = 0.0


def decide_retry(*, attempts: int, max_attempts: int, backoff_base_sec: float) -> RetryDecision:
    """
    attempts < max_attempts → повтор через backoff
    attempts >= max_attempts → DLQ, автоматических повторов больше нет
    """
    if attempts >= max_attempts:
        return RetryDecision(dead_letter=True)
    return RetryDecision(
        dead_letter=False,
        delay_sec=backoff_delay_sec(attempts=attempts, backoff_base_sec=backoff_base_sec),
    )
