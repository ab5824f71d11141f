"""Metrics aggregation over workflow instances."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .clock import elapsed_ms
from .models import InstanceStatus, WorkflowInstance


class IndustryAverage(BaseModel):
    """Benchmark to compare a run against."""

    total_execution_time_ms: float = Field(ge=0)
    total_cost: float = Field(ge=0)


class MetricsSummary(BaseModel):
    instance_id: str
    status: InstanceStatus
    steps_completed: int
    steps_total: int
    total_execution_time_ms: int
    human_time_spent_ms: int
    ai_processing_time_ms: int
    client_wait_time_ms: int
    total_cost: float
    output_quality_score: Optional[float] = None
    human_share: float = 0.0
    ai_share: float = 0.0
    client_share: float = 0.0
    # Negative values mean slower or more expensive than the benchmark.
    time_savings_pct: Optional[float] = None
    cost_savings_pct: Optional[float] = None


def effective_duration_ms(instance: WorkflowInstance, now: datetime) -> int:
    """Total run time for finished instances, wall clock so far otherwise."""
    if instance.is_terminal:
        return instance.total_execution_time_ms
    return elapsed_ms(instance.started_at, now)


def _share(part: float, whole: float) -> float:
    return part / whole if whole else 0.0


def savings_pct(baseline: float, actual: float) -> Optional[float]:
    """Percent saved against ``baseline``. Not clamped; ``None`` for a zero baseline."""
    if not baseline:
        return None
    return (baseline - actual) / baseline * 100


def summarize(
    instance: WorkflowInstance,
    now: datetime,
    industry_average: Optional[IndustryAverage] = None,
) -> MetricsSummary:
    total = effective_duration_ms(instance, now)
    summary = MetricsSummary(
        instance_id=instance.id,
        status=instance.status,
        steps_completed=instance.current_step_index,
        steps_total=len(instance.steps),
        total_execution_time_ms=total,
        human_time_spent_ms=instance.human_time_spent_ms,
        ai_processing_time_ms=instance.ai_processing_time_ms,
        client_wait_time_ms=instance.client_wait_time_ms,
        total_cost=instance.total_cost,
        output_quality_score=instance.output_quality_score,
        human_share=_share(instance.human_time_spent_ms, total),
        ai_share=_share(instance.ai_processing_time_ms, total),
        client_share=_share(instance.client_wait_time_ms, total),
    )
    if industry_average is not None:
        summary.time_savings_pct = savings_pct(
            industry_average.total_execution_time_ms, total
        )
        summary.cost_savings_pct = savings_pct(
            industry_average.total_cost, instance.total_cost
        )
    return summary
