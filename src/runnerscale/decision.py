from __future__ import annotations

from .config import ScalingConfig
from .models import JobCounts, NoOp, ScaleDown, ScaleUp, ScalingAction


def decide(
    counts: JobCounts,
    active_count: int,
    idle_runner: str | None,
    config: ScalingConfig,
) -> ScalingAction:
    """Map the observed queue and fleet state to a single scaling action.

    Scale-up wins over scale-down whenever the pending backlog reaches
    ``min_pending``. A scale-down needs both a fleet above ``min_runners`` and a
    backlog (pending plus waiting) below ``min_pending``, and only ever targets the
    idle runner reported by the store. At most one runner changes per call.
    """
    if counts.pending >= config.min_pending:
        if active_count >= config.max_runners:
            return NoOp()
        return ScaleUp(active_count + 1)

    if active_count > config.min_runners and counts.pending + counts.waiting < config.min_pending:
        if idle_runner is None:
            return NoOp()
        return ScaleDown(idle_runner)

    return NoOp()
