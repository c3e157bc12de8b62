"""Operator views over the in-process scheduler and payment metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from surplus_api.api.dependencies.security import require_operator_api_key
from surplus_api.observability.payments import get_payment_store
from surplus_api.observability.scheduler import get_scheduler_store

router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_operator_api_key)],
)


@router.get("/scheduler", summary="Marketplace scheduler snapshot")
async def get_scheduler_snapshot() -> dict[str, object]:
    return get_scheduler_store().snapshot().as_dict()


@router.get("/payments", summary="Payment webhook and gateway snapshot")
async def get_payments_snapshot() -> dict[str, object]:
    return get_payment_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    summary="Prometheus-formatted marketplace metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    payments_snapshot = get_payment_store().snapshot().as_dict()
    scheduler_snapshot = get_scheduler_store().snapshot()

    lines: list[str] = []

    webhook_totals = payments_snapshot.get("webhooks", {}).get("totals", {}) or {}
    for bucket, counts in webhook_totals.items():
        for kind, value in counts.items():
            lines.extend(
                _format_metric(
                    "surplus_payments_webhook_events_total",
                    "MercadoPago notifications grouped by outcome",
                    value,
                    labels={"bucket": bucket, "kind": kind},
                )
            )

    gateway_totals = payments_snapshot.get("gateway", {}).get("totals", {}) or {}
    for bucket, counts in gateway_totals.items():
        for operation, value in counts.items():
            lines.extend(
                _format_metric(
                    "surplus_payments_gateway_calls_total",
                    "MercadoPago API calls grouped by outcome",
                    value,
                    labels={"bucket": bucket, "operation": operation},
                )
            )

    for job_id, job in scheduler_snapshot.jobs.items():
        for counter, value in job.totals.items():
            lines.extend(
                _format_metric(
                    f"surplus_scheduler_job_{counter}",
                    f"Scheduler job {counter.replace('_', ' ')}",
                    value,
                    labels={"job_id": job_id},
                )
            )

    return PlainTextResponse("\n".join(lines) + "\n")
