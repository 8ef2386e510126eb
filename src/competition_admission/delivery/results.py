"""
Утилиты для работы с результатами доставки.
"""

from __future__ import annotations

from .base import DeliveryResult


def ok_result(
    provider: str, message_id: str | None = None, meta: dict | None = None
) -> DeliveryResult:
    return DeliveryResult(ok=True, provider=provider, message_id=message_id, meta=meta)


def duplicate_result(provider: str, message_id: str | None = None) -> DeliveryResult:
    return ok_result(provider, message_id=message_id, meta={"duplicate": True})


def fail_result(provider: str, error: str, meta: dict | None = None) -> DeliveryResult:
    return DeliveryResult(ok=False, provider=provider, error=error, meta=meta)
