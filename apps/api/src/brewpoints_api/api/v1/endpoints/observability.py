"""Observability endpoints exposing in-process loyalty counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from brewpoints_api.api.dependencies.security import require_admin_api_key
from brewpoints_api.observability.loyalty import get_loyalty_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.get("/loyalty", summary="Loyalty ledger and settlement counters")
async def get_loyalty_snapshot() -> dict[str, object]:
    return get_loyalty_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} counter",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    summary="Prometheus-formatted loyalty metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_loyalty_store().snapshot()
    lines: list[str] = []
    for key, value in sorted(snapshot.ledger.items()):
        if ":" in key:
            metric, kind = key.split(":", 1)
            lines.extend(
                _format_metric(
                    f"brewpoints_ledger_{metric}_total",
                    f"Ledger {metric} by event kind",
                    value,
                    {"kind": kind},
                )
            )
        else:
            lines.extend(_format_metric(f"brewpoints_ledger_{key}_total", f"Ledger {key.replace('_', ' ')}", value))
    for outcome, value in sorted(snapshot.settlements.items()):
        lines.extend(
            _format_metric("brewpoints_settlements_total", "Settlement outcomes", value, {"outcome": outcome})
        )
    for key, value in sorted(snapshot.compensations.items()):
        labels = {"reason": key.split(":", 1)[1]} if key.startswith("reason:") else {"reason": "all"}
        lines.extend(_format_metric("brewpoints_compensations_total", "Settlement compensations", value, labels))
    for event, value in sorted(snapshot.referrals.items()):
        lines.extend(_format_metric("brewpoints_referrals_total", "Referral events", value, {"event": event}))
    for event, value in sorted(snapshot.goals.items()):
        lines.extend(_format_metric("brewpoints_goal_events_total", "Community goal events", value, {"event": event}))
    for outcome, value in sorted(snapshot.notifications.items()):
        lines.extend(
            _format_metric("brewpoints_notifications_total", "Notification outcomes", value, {"outcome": outcome})
        )
    return PlainTextResponse("\n".join(lines) + "\n")
