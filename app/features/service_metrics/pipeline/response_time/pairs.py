"""
Response pairs - client message to professional reply latencies.
"""

from collections import defaultdict, deque
from collections.abc import Iterable
from datetime import datetime, timedelta

from app.features.service_metrics.domain.models import Message, ResponsePair
from app.features.service_metrics.pipeline.calendar.service import BusinessCalendar
from app.features.service_metrics.pipeline.stats import clamp

CAP_MINUTES = 7 * 24 * 60
SECONDS_PER_DAY = 24 * 60 * 60


class ResponsePairBuilder:
    """
    Walks each conversation in time order, answering pending client messages FIFO.

    Client messages older than the window start are consumed by a reply but
    never produce a pair. Client messages still pending at the end of a
    conversation produce a pair measured up to the capped deadline.
    """

    def __init__(self, cap_minutes: int = CAP_MINUTES) -> None:
        self.cap_minutes = cap_minutes

    def build_pairs(
        self,
        messages: Iterable[Message],
        calendar: BusinessCalendar,
        window_start: datetime,
        now: datetime,
    ) -> list[ResponsePair]:
        conversations: dict[str, list[Message]] = defaultdict(list)
        for message in messages:
            conversations[message.conversation_id].append(message)

        pairs: list[ResponsePair] = []
        for conversation_id in sorted(conversations):
            ordered = sorted(
                conversations[conversation_id], key=lambda item: (item.timestamp, item.id)
            )
            pending: deque[Message] = deque()

            for message in ordered:
                if not message.is_from_professional:
                    pending.append(message)
                    continue
                if not pending:
                    continue
                asked = pending.popleft()
                if asked.timestamp < window_start:
                    continue
                pair = self._pair(asked, message.timestamp, calendar, now)
                if pair is not None:
                    pairs.append(pair)

            for asked in pending:
                if asked.timestamp < window_start:
                    continue
                pair = self._pair(asked, None, calendar, now)
                if pair is not None:
                    pairs.append(pair)

        return pairs

    def _pair(
        self,
        asked: Message,
        answered_at: datetime | None,
        calendar: BusinessCalendar,
        now: datetime,
    ) -> ResponsePair | None:
        deadline = asked.timestamp + timedelta(minutes=self.cap_minutes)
        effective = deadline if answered_at is None or answered_at > deadline else answered_at

        minutes = calendar.elapsed_business_minutes(asked.timestamp, effective)
        age_days = (now - asked.timestamp).total_seconds() / SECONDS_PER_DAY
        if age_days < 0:
            return None
        return ResponsePair(delta_raw=clamp(minutes, 0, self.cap_minutes), age_days=age_days)


response_pair_builder = ResponsePairBuilder()
