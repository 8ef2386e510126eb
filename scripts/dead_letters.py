"""
Операторский CLI для DLQ.

Примеры:
    python scripts/dead_letters.py list --limit 20 --kind reminder
    python scripts/dead_letters.py requeue 42
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

from competition_admission.common.config import get_settings
from competition_admission.common.errors import AppError
from competition_admission.common.logging import setup_logging
from competition_admission.domain.enums import TaskKind
from competition_admission.queue.dead_letters import DeadLetterStore
from competition_admission.services.runtime import build_runtime


def _args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Inspect and requeue dead-lettered tasks")
    sub = p.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("list", help="Show recent dead letters")
    ls.add_argument("--limit", type=int, default=50)
    ls.add_argument("--kind", choices=[k.value for k in TaskKind], default=None)

    rq = sub.add_parser("requeue", help="Enqueue a dead letter's payload as a new task")
    rq.add_argument("entry_id", type=int)
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _args(argv)
    # stdout занят результатом команды
    setup_logging(stream=sys.stderr)
    runtime = build_runtime(get_settings())
    store = DeadLetterStore(runtime.db)
    try:
        if args.command == "list":
            kind = TaskKind(args.kind) if args.kind else None
            for entry in store.list_recent(limit=args.limit, kind=kind):
                print(json.dumps(asdict(entry), ensure_ascii=False, default=str))
            return 0

        task_id = store.requeue(args.entry_id, runtime.queue)
        print(json.dumps({"dead_letter_id": args.entry_id, "task_id": task_id}))
        return 0
    except AppError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1
    finally:
        runtime.close()


if __name__ == "__main__":
    raise SystemExit(main())
