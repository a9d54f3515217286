"""
Message collection - finds the chat messages that belong to a service.

The chat schema is not fixed, so discovery runs in stages and stops at the
first stage that yields messages:

    a. conversations whose service field matches, with inline and
       sub-collection messages
    b. message documents matched directly, in top-level collections and in
       sub-collections anywhere (collection group)
    c. conversations whose participant list contains a known professional

Messages are de-duplicated by (conversation id, message id) so the same
store contents always produce the same list.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from app.config import settings
from app.db.firestore import DocumentStore, StoredDocument
from app.features.service_metrics.domain.models import Message
from app.features.service_metrics.domain.normalize import (
    extract_conversation_id,
    extract_message_id,
    extract_sender_id,
    extract_timestamp,
    normalize_identifier,
    numeric_form,
)
from app.features.service_metrics.domain.trace import MetricsTrace
from app.features.service_metrics.pipeline.identity.service import (
    IdentityResolver,
    IdentityScope,
    identity_resolver,
    open_scope,
)
from app.infrastructure.observability.logging import get_logger

from .repository import ConversationRepository

logger = get_logger(__name__)

INLINE_MESSAGES_KEY = "messages"


def identifier_variants(value: Any) -> list[Any]:
    """The raw value plus its string and numeric forms, without duplicates."""
    variants: list[Any] = []
    for candidate in (value, normalize_identifier(value), numeric_form(value)):
        if candidate is None or candidate == "":
            continue
        if any(type(candidate) is type(seen) and candidate == seen for seen in variants):
            continue
        variants.append(candidate)
    return variants


@dataclass(slots=True)
class RawMessage:
    """A message record before normalisation, with the ids its location implies."""

    data: Mapping[str, Any]
    conversation_id: str | None
    fallback_id: str | None = None


@dataclass(slots=True)
class MessageBatch:
    """Raw messages that share one identity scope."""

    scope: IdentityScope
    messages: list[RawMessage] = field(default_factory=list)


class MessageCollector:
    """Staged discovery of a service's chat messages."""

    def __init__(
        self,
        store: DocumentStore,
        trace: MetricsTrace | None = None,
        resolver: IdentityResolver = identity_resolver,
        conversation_collections: Sequence[str] | None = None,
        message_collections: Sequence[str] | None = None,
        service_fields: Sequence[str] | None = None,
        participant_fields: Sequence[str] | None = None,
    ) -> None:
        self.trace = trace or MetricsTrace()
        self.repository = ConversationRepository(store, self.trace)
        self.resolver = resolver
        self.conversation_collections = list(
            conversation_collections or settings.conversation_collections()
        )
        self.message_collections = list(message_collections or settings.message_collections())
        self.service_fields = list(service_fields or settings.service_field_names())
        self.participant_fields = list(participant_fields or settings.participant_field_names())

    async def collect(self, service_id: Any, known_professional_ids: set[str]) -> list[Message]:
        """
        Messages for the service, with sender roles resolved.

        known_professional_ids is extended in place with every professional
        identifier discovered while scanning.
        """
        service_values = identifier_variants(service_id)
        if not service_values:
            return []

        conversations = await self.repository.find_by_field(
            self.conversation_collections, self.service_fields, service_values
        )
        messages = await self._from_conversations(conversations, known_professional_ids)
        self.trace.record(
            "stage_conversations_by_service",
            conversation_count=len(conversations),
            message_count=len(messages),
        )
        if messages:
            return messages

        direct, grouped = await asyncio.gather(
            self.repository.find_by_field(
                self.message_collections, self.service_fields, service_values
            ),
            self.repository.find_in_collection_group(
                self.message_collections, self.service_fields, service_values
            ),
        )
        messages = self._from_message_documents(direct, grouped, known_professional_ids)
        self.trace.record(
            "stage_messages_by_service",
            document_count=len(direct) + len(grouped),
            message_count=len(messages),
        )
        if messages:
            return messages

        if not known_professional_ids:
            return []

        needles: list[Any] = []
        for identifier in sorted(known_professional_ids):
            for variant in identifier_variants(identifier):
                if not any(type(variant) is type(seen) and variant == seen for seen in needles):
                    needles.append(variant)
        conversations = await self.repository.find_by_participant(
            self.conversation_collections, self.participant_fields, needles
        )
        messages = await self._from_conversations(conversations, known_professional_ids)
        self.trace.record(
            "stage_conversations_by_participant",
            conversation_count=len(conversations),
            message_count=len(messages),
        )
        return messages

    async def _from_conversations(
        self, conversations: Sequence[StoredDocument], known_professional_ids: set[str]
    ) -> list[Message]:
        if not conversations:
            return []

        stored_messages = await asyncio.gather(
            *(
                self.repository.read_messages(conversation, self.message_collections)
                for conversation in conversations
            )
        )

        batches = []
        for conversation, documents in zip(conversations, stored_messages, strict=True):
            conversation_id = extract_conversation_id(conversation.data) or conversation.id
            batch = MessageBatch(scope=open_scope(known_professional_ids, conversation.data))

            inline = conversation.data.get(INLINE_MESSAGES_KEY)
            if isinstance(inline, list):
                batch.messages.extend(
                    RawMessage(
                        data=item,
                        conversation_id=conversation_id,
                        fallback_id=f"inline-{position}",
                    )
                    for position, item in enumerate(inline)
                    if isinstance(item, Mapping)
                )
            batch.messages.extend(
                RawMessage(
                    data=document.data,
                    conversation_id=conversation_id,
                    fallback_id=document.id,
                )
                for document in documents
            )
            batches.append(batch)

        return self._resolve(batches, known_professional_ids)

    def _from_message_documents(
        self,
        direct: Sequence[StoredDocument],
        grouped: Sequence[StoredDocument],
        known_professional_ids: set[str],
    ) -> list[Message]:
        documents: dict[str, RawMessage] = {}
        for document in direct:
            documents[document.path] = RawMessage(
                data=document.data,
                conversation_id=extract_conversation_id(document.data) or document.id,
                fallback_id=document.id,
            )
        for document in grouped:
            documents.setdefault(
                document.path,
                RawMessage(
                    data=document.data,
                    conversation_id=document.parent_id or extract_conversation_id(document.data),
                    fallback_id=document.id,
                ),
            )
        if not documents:
            return []

        batch = MessageBatch(
            scope=open_scope(known_professional_ids),
            messages=[documents[path] for path in sorted(documents)],
        )
        return self._resolve([batch], known_professional_ids)

    def _resolve(
        self, batches: Iterable[MessageBatch], known_professional_ids: set[str]
    ) -> list[Message]:
        batches = list(batches)

        # Harvest identifiers from every document before resolving any role
        for batch in batches:
            for raw in batch.messages:
                batch.scope.absorb(raw.data)
            if batch.scope.conversation_scoped:
                known_professional_ids.update(batch.scope.harvested)

        seen: set[tuple[str, str]] = set()
        messages: list[Message] = []
        for batch in batches:
            for raw in batch.messages:
                message = self._normalize(raw, batch.scope)
                if message is None:
                    continue
                dedupe_key = (message.conversation_id, message.id)
                if dedupe_key in seen:
                    continue
                seen.add(dedupe_key)
                messages.append(message)
        return messages

    def _normalize(self, raw: RawMessage, scope: IdentityScope) -> Message | None:
        timestamp = extract_timestamp(raw.data)
        if timestamp is None:
            return None

        conversation_id = raw.conversation_id or extract_conversation_id(raw.data)
        if not conversation_id:
            return None

        sender_id = extract_sender_id(raw.data)
        role = self.resolver.resolve_role(raw.data, sender_id, scope.identifiers)
        if role is None:
            return None

        message_id = extract_message_id(raw.data) or raw.fallback_id
        if not message_id:
            epoch_ms = int(timestamp.timestamp() * 1000)
            message_id = f"{epoch_ms}::{'professional' if role else 'client'}"

        return Message(
            id=message_id,
            conversation_id=conversation_id,
            timestamp=timestamp,
            is_from_professional=role,
        )
