"""
Diagnostic trace returned alongside every metric value.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class TraceStep:
    stage: str
    data: dict[str, Any]
    timestamp: datetime


@dataclass(slots=True)
class MetricsTrace:
    """Ordered list of named stages with the data observed at each one."""

    steps: list[TraceStep] = field(default_factory=list)

    def record(self, stage: str, **data: Any) -> None:
        self.steps.append(TraceStep(stage=stage, data=data, timestamp=datetime.now(UTC)))
        if settings.METRICS_DEBUG:
            logger.debug("Metrics trace step", stage=stage, **data)

    def stages(self) -> list[str]:
        return [step.stage for step in self.steps]

    def find(self, stage: str) -> TraceStep | None:
        for step in self.steps:
            if step.stage == stage:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [
                {
                    "stage": step.stage,
                    "data": step.data,
                    "timestamp": step.timestamp.isoformat(),
                }
                for step in self.steps
            ]
        }
