"""
Domain models for the service metrics feature.

Plain dataclasses shared by repositories, pipeline stages and the public
service layer. Records read from the stores are never mutated.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .trace import MetricsTrace

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True, slots=True)
class Message:
    """A chat message reduced to the fields response-time needs."""

    id: str
    conversation_id: str
    timestamp: datetime
    is_from_professional: bool


@dataclass(frozen=True, slots=True)
class AvailabilitySegment:
    """Weekly opening window; weekday 0 is Sunday."""

    weekday: int
    start_minute: int
    end_minute: int

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"weekday out of range: {self.weekday}")
        if not (0 <= self.start_minute < self.end_minute <= MINUTES_PER_DAY):
            raise ValueError(
                f"invalid segment minutes: {self.start_minute}-{self.end_minute}"
            )


@dataclass(frozen=True, slots=True)
class UnavailabilityInterval:
    """Blackout window subtracted from availability."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError("unavailability interval must end after it starts")


@dataclass(frozen=True, slots=True)
class ResponsePair:
    delta_raw: float  # business minutes, clamped to [0, cap]
    age_days: float


@dataclass(slots=True)
class BookingRecord:
    """Projection of a booking row joined with its latest final payment."""

    service_id: int | str
    client_id: int | str | None
    status: str
    start_at: datetime | None
    end_at: datetime | None
    ordered_at: datetime | None
    final_price: float
    commission: float
    final_payment_status: str = ""
    cancelled_by: str | None = None

    @property
    def event_at(self) -> datetime | None:
        return self.end_at or self.start_at or self.ordered_at

    @property
    def net_revenue(self) -> float:
        return max(0.0, self.final_price - self.commission)

    @property
    def is_disputed(self) -> bool:
        status = self.final_payment_status
        return "dispute" in status or "refund" in status


@dataclass(slots=True)
class ReviewRecord:
    service_id: int | str
    rating: float
    reviewed_at: datetime | None


@dataclass(slots=True)
class ServiceResponseRecord:
    """Stored per-service response figure (minutes) used for category calibration."""

    service_id: int | str
    response_minutes: float


@dataclass(slots=True)
class CategoryStats:
    """Category-wide calibration values; lives for one invocation only."""

    mean_rating: float
    p90_cancel_ratio: float
    p75_response_minutes: float
    p90_revenue: float
    p90_dispute_ratio: float
    prior: float = 50.0

    def to_dict(self) -> dict[str, float]:
        return {
            "mu_cat": self.mean_rating,
            "P90_cancel_cat": self.p90_cancel_ratio,
            "P75_RT_cat": self.p75_response_minutes,
            "P90_euros_cat": self.p90_revenue,
            "P90_d_cat": self.p90_dispute_ratio,
            "Prior_cat": self.prior,
        }


@dataclass(slots=True)
class ResponseTimeResult:
    value: float | None
    debug: MetricsTrace

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "debug": self.debug.to_dict()}


@dataclass(slots=True)
class SuccessRateResult:
    value: float | None
    components: dict[str, Any] = field(default_factory=dict)
    debug: MetricsTrace = field(default_factory=MetricsTrace)

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "components": self.components,
            "debug": self.debug.to_dict(),
        }
