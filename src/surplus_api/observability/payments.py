"""In-memory observability helper for payment webhooks and gateway calls."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class WebhookEventLog:
    last_event_at: datetime | None = None
    last_event_kind: str | None = None
    last_payment_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_kind: str | None = None
    last_failure_reason: str | None = None


@dataclass
class GatewayEventLog:
    last_failure_at: datetime | None = None
    last_failure_operation: str | None = None
    last_failure_reason: str | None = None


@dataclass
class PaymentObservabilitySnapshot:
    webhook_totals: Dict[str, Dict[str, int]]
    gateway_totals: Dict[str, Dict[str, int]]
    webhook_events: WebhookEventLog
    gateway_events: GatewayEventLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "webhooks": {
                "totals": self.webhook_totals,
                "events": {
                    "last_event_at": _iso(self.webhook_events.last_event_at),
                    "last_event_kind": self.webhook_events.last_event_kind,
                    "last_payment_id": self.webhook_events.last_payment_id,
                    "last_failure_at": _iso(self.webhook_events.last_failure_at),
                    "last_failure_kind": self.webhook_events.last_failure_kind,
                    "last_failure_reason": self.webhook_events.last_failure_reason,
                },
            },
            "gateway": {
                "totals": self.gateway_totals,
                "events": {
                    "last_failure_at": _iso(self.gateway_events.last_failure_at),
                    "last_failure_operation": self.gateway_events.last_failure_operation,
                    "last_failure_reason": self.gateway_events.last_failure_reason,
                },
            },
        }


_WEBHOOK_BUCKETS = ("received", "processed", "ignored", "failed")
_GATEWAY_BUCKETS = ("succeeded", "retried", "failed")


@dataclass
class PaymentObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _webhook_totals: Dict[str, Counter] = field(
        default_factory=lambda: {bucket: Counter() for bucket in _WEBHOOK_BUCKETS}
    )
    _gateway_totals: Dict[str, Counter] = field(
        default_factory=lambda: {bucket: Counter() for bucket in _GATEWAY_BUCKETS}
    )
    _webhook_events: WebhookEventLog = field(default_factory=WebhookEventLog)
    _gateway_events: GatewayEventLog = field(default_factory=GatewayEventLog)

    def record_webhook_received(self, kind: str, payment_id: str | None) -> None:
        with self._lock:
            self._webhook_totals["received"][kind] += 1
            self._webhook_events.last_event_at = _utcnow()
            self._webhook_events.last_event_kind = kind
            self._webhook_events.last_payment_id = payment_id

    def record_webhook_outcome(self, kind: str, bucket: str, error: str | None = None) -> None:
        with self._lock:
            self._webhook_totals[bucket][kind] += 1
            if bucket == "failed":
                self._webhook_events.last_failure_at = _utcnow()
                self._webhook_events.last_failure_kind = kind
                self._webhook_events.last_failure_reason = error

    def record_gateway_call(self, operation: str, bucket: str, error: str | None = None) -> None:
        with self._lock:
            self._gateway_totals[bucket][operation] += 1
            if bucket == "failed":
                self._gateway_events.last_failure_at = _utcnow()
                self._gateway_events.last_failure_operation = operation
                self._gateway_events.last_failure_reason = error

    def snapshot(self) -> PaymentObservabilitySnapshot:
        with self._lock:
            webhook_totals = {bucket: dict(counter) for bucket, counter in self._webhook_totals.items()}
            gateway_totals = {bucket: dict(counter) for bucket, counter in self._gateway_totals.items()}
            webhook_events = WebhookEventLog(**vars(self._webhook_events))
            gateway_events = GatewayEventLog(**vars(self._gateway_events))
        return PaymentObservabilitySnapshot(
            webhook_totals=webhook_totals,
            gateway_totals=gateway_totals,
            webhook_events=webhook_events,
            gateway_events=gateway_events,
        )

    def reset(self) -> None:
        with self._lock:
            for counter in (*self._webhook_totals.values(), *self._gateway_totals.values()):
                counter.clear()
            self._webhook_events = WebhookEventLog()
            self._gateway_events = GatewayEventLog()


_PAYMENT_STORE = PaymentObservabilityStore()


def get_payment_store() -> PaymentObservabilityStore:
    return _PAYMENT_STORE


__all__ = ["PaymentObservabilitySnapshot", "PaymentObservabilityStore", "get_payment_store"]
