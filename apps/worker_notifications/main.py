"""
Worker Notifications.

Алгоритм:
- пул воркеров забирает задачи из durable-очереди (tasks)
- confirmation / reminder → уведомление в почтовый ящик пользователя
- ошибки → backoff → DLQ (dead_letters)
- SIGTERM / SIGINT → мягкая остановка пула
"""

from __future__ import annotations

import signal
import threading
import time

from competition_admission.common.config import get_settings
from competition_admission.common.logging import get_project_logger, setup_logging
from competition_admission.common.metrics import QUEUE_DEPTH, maybe_start_metrics_server
from competition_admission.delivery.handlers import NotificationHandlers
from competition_admission.delivery.mailbox import MailboxNotifier
from competition_admission.queue.worker_pool import WorkerPool
from competition_admission.services.runtime import build_runtime

log = get_project_logger()

_DEPTH_REFRESH_SEC = 15


def run_loop(stop: threading.Event) -> None:
    settings = get_settings()
    runtime = build_runtime(settings)
    handlers = NotificationHandlers(runtime.db, MailboxNotifier(runtime.db))
    pool = WorkerPool(
        runtime.queue,
        handlers,
        concurrency=settings.worker_concurrency,
        poll_interval_sec=settings.worker_poll_interval_sec,
        lease_sec=settings.worker_lease_sec,
        task_timeout_sec=settings.task_timeout_sec,
        reaper_interval_sec=settings.worker_reaper_interval_sec,
        reaper_limit=settings.worker_reaper_limit,
    )
    pool.start()
    try:
        while not stop.is_set():
            try:
                QUEUE_DEPTH.set(runtime.queue.depth())
            except Exception as e:
                log.warning("queue_depth_refresh_failed", extra={"payload": {"err": str(e)[:200]}})
            stop.wait(_DEPTH_REFRESH_SEC)
    finally:
        pool.stop(timeout_sec=settings.task_timeout_sec + 5)
        runtime.close()


def main() -> None:
    setup_logging()
    settings = get_settings()
    maybe_start_metrics_server(settings.metrics_port)

    stop = threading.Event()

    def _on_signal(signum, _frame) -> None:
        log.info("worker_notifications_stopping", extra={"payload": {"signal": signum}})
        stop.set()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)

    log.info(
        "worker_notifications_started",
        extra={"payload": {"concurrency": settings.worker_concurrency}},
    )
    while not stop.is_set():
        try:
            run_loop(stop)
        except Exception as e:
            log.error("worker_notifications_fatal", extra={"payload": {"err": str(e)[:200]}})
            time.sleep(2)


if __name__ == "__main__":
    main()
