"""
Service metrics entry points.

Each computation is independent and never raises: collaborator failures
and unexpected errors become value=None with the reason in the trace.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from app.db.firestore import DocumentStore, firestore_manager
from app.features.service_metrics.domain.models import ResponseTimeResult, SuccessRateResult
from app.features.service_metrics.domain.normalize import coerce_key, normalize_identifier
from app.features.service_metrics.domain.trace import MetricsTrace
from app.features.service_metrics.pipeline.calendar.service import (
    BusinessCalendarService,
    business_calendar_service,
)
from app.features.service_metrics.pipeline.collection.service import MessageCollector
from app.features.service_metrics.pipeline.response_time.estimator import ResponseTimeEstimator
from app.features.service_metrics.pipeline.response_time.pairs import (
    ResponsePairBuilder,
    response_pair_builder,
)
from app.features.service_metrics.pipeline.success_rate.service import (
    SuccessRateScorer,
    success_rate_scorer,
)
from app.infrastructure.observability.logging import get_logger, log_metric_result

logger = get_logger(__name__)

RESPONSE_WINDOW_DAYS = 180


class DocumentStoreProvider(Protocol):
    def get_store(self) -> DocumentStore | None: ...


@dataclass(slots=True)
class ServiceQualityResult:
    response_time: ResponseTimeResult
    success_rate: SuccessRateResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "responseTime": self.response_time.to_dict(),
            "successRate": self.success_rate.to_dict(),
        }


class ServiceMetricsService:
    """Computes response time and success rate for a single service."""

    def __init__(
        self,
        document_store_manager: DocumentStoreProvider = firestore_manager,
        calendar_service: BusinessCalendarService = business_calendar_service,
        pair_builder: ResponsePairBuilder = response_pair_builder,
        scorer: SuccessRateScorer = success_rate_scorer,
    ) -> None:
        self.document_store_manager = document_store_manager
        self.calendar_service = calendar_service
        self.pair_builder = pair_builder
        self.scorer = scorer

    async def compute_service_response_time(
        self, service_id, professional_id, now: datetime | None = None
    ) -> ResponseTimeResult:
        """Robust business-hours response time in minutes, or None when not measurable."""
        trace = MetricsTrace()
        try:
            value = await self._response_time(service_id, professional_id, trace, now)
        except Exception as exc:
            logger.exception(
                "Response time computation failed",
                service_id=service_id,
                professional_id=professional_id,
            )
            trace.record("unexpected_error", error=str(exc))
            value = None

        log_metric_result("response_time", service_id, value, trace.stages())
        return ResponseTimeResult(value=value, debug=trace)

    async def compute_service_success_rate(
        self, service_id, category_id=None, response_time_minutes: float | None = None
    ) -> SuccessRateResult:
        """Bounded 0-100 quality score, or None when the category has no data."""
        trace = MetricsTrace()
        try:
            result = await self.scorer.score(
                service_id,
                category_id=category_id,
                response_time_minutes=response_time_minutes,
                trace=trace,
            )
        except Exception as exc:
            logger.exception("Success rate computation failed", service_id=service_id)
            trace.record("unexpected_error", error=str(exc))
            result = SuccessRateResult(value=None, debug=trace)

        log_metric_result("success_rate", service_id, result.value, trace.stages())
        return result

    async def compute_service_quality(
        self, service_id, professional_id, category_id=None
    ) -> ServiceQualityResult:
        """Response time first, then the success rate using that response time."""
        response_time = await self.compute_service_response_time(service_id, professional_id)
        success_rate = await self.compute_service_success_rate(
            service_id,
            category_id=category_id,
            response_time_minutes=response_time.value,
        )
        return ServiceQualityResult(response_time=response_time, success_rate=success_rate)

    async def _response_time(
        self, service_id, professional_id, trace: MetricsTrace, now: datetime | None
    ) -> float | None:
        store = self.document_store_manager.get_store()
        if store is None:
            trace.record("firestore_unavailable")
            return None

        known_professional_ids: set[str] = set()
        normalized_professional_id = normalize_identifier(professional_id)
        if normalized_professional_id:
            known_professional_ids.add(normalized_professional_id)

        collector = MessageCollector(store, trace=trace)
        messages = await collector.collect(service_id, known_professional_ids)
        trace.record(
            "messages_collected",
            service_id=str(service_id),
            professional_id=normalized_professional_id,
            professional_identifier_count=len(known_professional_ids),
            message_count=len(messages),
        )
        if not messages:
            trace.record("no_messages_found")
            return None

        calendar = await self.calendar_service.load(coerce_key(professional_id))
        trace.record(
            "calendar_loaded",
            default_calendar=calendar.is_default,
            blackout_count=len(calendar.unavailable),
        )

        now = now or datetime.now(UTC)
        window_start = now - timedelta(days=RESPONSE_WINDOW_DAYS)
        pairs = self.pair_builder.build_pairs(messages, calendar, window_start, now)
        trace.record("response_pairs_built", pair_count=len(pairs))

        return ResponseTimeEstimator().estimate(pairs, trace)


service_metrics_service = ServiceMetricsService()


async def compute_service_response_time(service_id, professional_id) -> ResponseTimeResult:
    return await service_metrics_service.compute_service_response_time(service_id, professional_id)


async def compute_service_success_rate(
    service_id, category_id=None, response_time_minutes: float | None = None
) -> SuccessRateResult:
    return await service_metrics_service.compute_service_success_rate(
        service_id, category_id=category_id, response_time_minutes=response_time_minutes
    )


async def compute_service_quality(service_id, professional_id, category_id=None):
    return await service_metrics_service.compute_service_quality(
        service_id, professional_id, category_id=category_id
    )
