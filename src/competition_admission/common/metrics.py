"""
Метрики Prometheus для сервиса.

Назначение:
- счётчики допуска к соревнованиям
- счётчики/задержки задач очереди и DLQ
- экспорт через отдельный HTTP-порт воркера/планировщика (METRICS_PORT)
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from competition_admission.common.logging import get_project_logger

log = get_project_logger()

# =============================================================================
# ДОПУСК
# =============================================================================
ADMISSIONS_TOTAL = Counter(
    "competition_admissions_total",
    "Количество попыток допуска по результату",
    ["result"],  # admitted|replayed|not_found|deadline_exceeded|capacity_exceeded|...
)

CONFIRMATION_ENQUEUE_FAILURES_TOTAL = Counter(
    "competition_confirmation_enqueue_failures_total",
    "Регистрации, для которых не удалось поставить задачу подтверждения",
)

# =============================================================================
# ОЧЕРЕДЬ
# =============================================================================
QUEUE_ENQUEUED_TOTAL = Counter(
    "competition_queue_enqueued_total",
    "Постановки задач в очередь",
    ["kind", "result"],  # result=created|deduplicated
)

QUEUE_TASKS_TOTAL = Counter(
    "competition_queue_tasks_total",
    "Количество обработанных задач очереди",
    ["kind", "result"],  # result=success|retry|dead_letter|stale
)

TASK_LATENCY_MS = Histogram(
    "competition_task_latency_ms",
    "Время выполнения обработчика задачи (мс)",
    ["kind"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)

DEAD_LETTERS_TOTAL = Counter(
    "competition_dead_letters_total",
    "Задачи, исчерпавшие попытки",
    ["kind"],
)

QUEUE_STALE_SETTLES_TOTAL = Counter(
    "competition_queue_stale_settles_total",
    "Завершения задач от захвата, чья аренда уже перехвачена",
    ["op"],  # complete|reschedule|dead_letter
)

LEASES_EXPIRED_TOTAL = Counter(
    "competition_queue_leases_expired_total",
    "Задачи, возвращённые в очередь после истечения аренды",
)

QUEUE_DEPTH = Gauge(
    "competition_queue_depth",
    "Текущее количество задач в очереди",
)

# =============================================================================
# ПЛАНИРОВЩИК
# =============================================================================
SCHEDULER_RUNS_TOTAL = Counter(
    "competition_scheduler_runs_total",
    "Запуски периодических задач",
    ["job", "result"],  # result=ok|skipped|failed
)


@contextmanager
def track_task_latency(kind: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        TASK_LATENCY_MS.labels(kind=kind).observe(elapsed_ms)


def maybe_start_metrics_server(port: int) -> None:
    if port <= 0:
        return
    start_http_server(port)
    log.info("metrics_server_started", extra={"payload": {"port": port}})
