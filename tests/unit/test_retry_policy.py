from __future__ import annotations

from competition_admission.queue.retry import backoff_delay_sec, decide_retry


def test_backoff_doubles_per_attempt() -> None:
    assert [backoff_delay_sec(attempts=a, backoff_base_sec=2.0) for a in (1, 2, 3)] == [
        2.0,
        4.0,
        8.0,
    ]


def test_retry_until_attempts_exhausted() -> None:
    first = decide_retry(attempts=1, max_attempts=3, backoff_base_sec=2.0)
    assert first.dead_letter is False
    assert first.delay_sec == 2.0

    second = decide_retry(attempts=2, max_attempts=3, backoff_base_sec=2.0)
    assert second.dead_letter is False
    assert second.delay_sec == 4.0

    assert decide_retry(attempts=3, max_attempts=3, backoff_base_sec=2.0).dead_letter is True


def test_single_attempt_goes_straight_to_dlq() -> None:
    assert decide_retry(attempts=1, max_attempts=1, backoff_base_sec=2.0).dead_letter is True
