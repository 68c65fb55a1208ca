"""Observability endpoints for loyalty telemetry and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from rewardly_api.api.dependencies.security import require_internal_api_key
from rewardly_api.observability.loyalty import get_loyalty_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_internal_api_key)],
)


@router.get("/loyalty", summary="Loyalty observability snapshot")
async def get_loyalty_snapshot() -> dict[str, object]:
    return get_loyalty_store().snapshot().as_dict()


def _format_metric(name: str, description: str, samples: dict[str, int]) -> list[str]:
    lines = [f"# HELP {name} {description}", f"# TYPE {name} counter"]
    for key, value in sorted(samples.items()):
        lines.append(f'{name}{{key="{key}"}} {value}')
    return lines


@router.get(
    "/prometheus",
    summary="Prometheus-formatted loyalty metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_loyalty_store().snapshot().as_dict()
    lines: list[str] = []
    for group, counters in snapshot.items():
        if counters:
            lines.extend(
                _format_metric(f"rewardly_loyalty_{group}_total", f"Loyalty {group} counters", counters)
            )
    return PlainTextResponse("\n".join(lines) + "\n")
