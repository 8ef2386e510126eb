"""
Scheduler.

Назначение:
- раз в REMINDER_INTERVAL_SEC ставить напоминания о скором старте
- на каждом тике добирать потерянные подтверждения регистраций
"""

from __future__ import annotations

import time

from competition_admission.common.config import get_settings
from competition_admission.common.logging import get_project_logger, setup_logging
from competition_admission.common.metrics import maybe_start_metrics_server
from competition_admission.jobs.confirmation_reconcile_job import ConfirmationReconciler
from competition_admission.jobs.reminder_job import ReminderScheduler
from competition_admission.services.runtime import build_runtime

log = get_project_logger()

_RECONCILE_INTERVAL_SEC = 300


def run_loop() -> None:
    settings = get_settings()
    runtime = build_runtime(settings)
    reminders = ReminderScheduler(
        runtime.db,
        runtime.queue,
        runtime.build_lock(),
        lookahead_hours=settings.reminder_lookahead_hours,
        window_hours=settings.reminder_window_hours,
        lock_ttl_sec=settings.scheduler_lock_ttl_sec,
        max_attempts=settings.task_max_attempts,
        backoff_base_sec=settings.task_backoff_base_sec,
    )
    reconciler = ConfirmationReconciler(
        runtime.db,
        runtime.queue,
        lookback_hours=settings.confirmation_reconcile_lookback_hours,
        min_age_sec=settings.confirmation_reconcile_min_age_sec,
        limit=settings.confirmation_reconcile_limit,
        max_attempts=settings.task_max_attempts,
        backoff_base_sec=settings.task_backoff_base_sec,
    )

    reminder_interval = max(5, int(settings.reminder_interval_sec))
    tick = min(reminder_interval, _RECONCILE_INTERVAL_SEC)
    next_reminder_at = 0.0

    log.info(
        "scheduler_started",
        extra={
            "payload": {
                "reminder_enabled": settings.reminder_enabled,
                "reminder_interval_sec": reminder_interval,
                "confirmation_reconcile_enabled": settings.confirmation_reconcile_enabled,
            }
        },
    )

    while True:
        now = time.monotonic()
        if settings.reminder_enabled and now >= next_reminder_at:
            try:
                reminders.run()
            except Exception as e:
                log.error("scheduler_reminders_error", extra={"payload": {"err": str(e)[:300]}})
            next_reminder_at = now + reminder_interval

        if settings.confirmation_reconcile_enabled:
            try:
                reconciler.run()
            except Exception as e:
                log.error(
                    "scheduler_confirmation_reconcile_error",
                    extra={"payload": {"err": str(e)[:300]}},
                )
        time.sleep(tick)


def main() -> None:
    setup_logging()
    maybe_start_metrics_server(get_settings().metrics_port)
    while True:
        try:
            run_loop()
        except Exception as e:
            log.error("scheduler_fatal", extra={"payload": {"err": str(e)[:200]}})
            time.sleep(2)


if __name__ == "__main__":
    main()
