"""
Identity resolution - decides whether a chat message came from the professional.

There is no reliable foreign key for roles, so resolution runs through a
fixed ladder of heuristics and falls back to membership in a working set of
known professional identifiers. That set grows while documents are scanned.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from app.features.service_metrics.domain.normalize import normalize_identifier

PROFESSIONAL_ROLE_KEYWORDS = ("pro", "professional", "provider")
CLIENT_ROLE_KEYWORDS = ("client", "customer", "user")
PROFESSIONAL_KEY_KEYWORDS = ("professional", "provider", "pro")

MESSAGE_FLAG_KEYS = ("isFromProfessional", "fromProfessional", "fromPro", "isPro")
SENDER_RECORD_KEYS = ("sender", "user", "author")
SENDER_FLAG_KEYS = ("isProfessional", "professional", "isPro")
SENDER_ROLE_KEYS = ("role", "type")
MESSAGE_ROLE_KEYS = ("senderRole", "role", "sender_type", "type")

PARTICIPANT_META_KEYS = ("participantsMeta", "participants_meta", "participantsInfo")
PARTICIPANT_PRO_FLAGS = ("is_professional", "isProfessional", "professional")

MAX_SCAN_DEPTH = 3


def role_from_text(value: Any) -> bool | None:
    if not isinstance(value, str):
        return None
    role = value.lower()
    if any(keyword in role for keyword in PROFESSIONAL_ROLE_KEYWORDS):
        return True
    if any(keyword in role for keyword in CLIENT_ROLE_KEYWORDS):
        return False
    return None


def _first_present(record: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for name in keys:
        value = record.get(name)
        if value:
            return value
    return None


def collect_identifiers_by_key(
    data: Any,
    keywords: Iterable[str] = PROFESSIONAL_KEY_KEYWORDS,
    max_depth: int = MAX_SCAN_DEPTH,
) -> list[str]:
    """
    Identifiers stored under keys that mention one of the keywords.

    Walks nested dicts/lists with an explicit stack, never deeper than
    max_depth and never visiting the same container twice.
    """
    keywords = tuple(keyword.lower() for keyword in keywords)
    found: dict[str, None] = {}
    visited: set[int] = set()
    stack: list[tuple[Any, int]] = [(data, 0)]

    def add(value: Any) -> None:
        identifier = normalize_identifier(value)
        if identifier:
            found[identifier] = None

    while stack:
        node, depth = stack.pop()
        if depth > max_depth or not isinstance(node, Mapping | list):
            continue
        if id(node) in visited:
            continue
        visited.add(id(node))

        if isinstance(node, list):
            stack.extend((item, depth + 1) for item in reversed(node))
            continue

        for name, value in node.items():
            matches = any(keyword in str(name).lower() for keyword in keywords)
            if not matches:
                if isinstance(value, Mapping | list):
                    stack.append((value, depth + 1))
                continue
            if isinstance(value, list):
                for item in value:
                    add(item)
            elif isinstance(value, Mapping):
                add(value)
                stack.append((value, depth + 1))
            else:
                add(value)

    return list(found)


def professional_ids_from_participant_meta(data: Any) -> set[str]:
    """Participants explicitly flagged as professionals in per-conversation metadata."""
    if not isinstance(data, Mapping):
        return set()
    meta = _first_present(data, PARTICIPANT_META_KEYS)
    if not isinstance(meta, Mapping):
        return set()
    confirmed = set()
    for participant, info in meta.items():
        if not isinstance(info, Mapping):
            continue
        if any(info.get(flag) is True for flag in PARTICIPANT_PRO_FLAGS):
            identifier = normalize_identifier(participant)
            if identifier:
                confirmed.add(identifier)
    return confirmed


@dataclass(slots=True)
class IdentityScope:
    """Professional identifiers that apply while resolving one group of messages."""

    identifiers: set[str]
    conversation_scoped: bool = False
    harvested: set[str] = field(default_factory=set)

    def absorb(self, raw: Any) -> None:
        """Add identifiers found under professional-looking keys of a raw record."""
        for identifier in collect_identifiers_by_key(raw):
            self.identifiers.add(identifier)
            self.harvested.add(identifier)


def open_scope(known_professional_ids: set[str], conversation: Any = None) -> IdentityScope:
    """
    Scope for the messages of one conversation.

    Only per-participant role metadata makes a conversation-local scope, so
    another conversation's professional cannot leak in; those identifiers
    are still added to the shared set for later searches. Identifiers found
    under professional-looking keys only augment the shared set, which is
    then the scope.
    """
    local = professional_ids_from_participant_meta(conversation)
    if conversation is not None:
        known_professional_ids.update(collect_identifiers_by_key(conversation))
    if local:
        known_professional_ids.update(local)
        return IdentityScope(identifiers=local, conversation_scoped=True, harvested=set(local))
    return IdentityScope(identifiers=known_professional_ids)


class IdentityResolver:
    """Ordered role heuristics; the first decisive signal wins."""

    def resolve_role(
        self,
        raw_message: Mapping[str, Any] | None,
        sender_id: str | None,
        known_professional_ids: set[str],
    ) -> bool | None:
        if not isinstance(raw_message, Mapping):
            return None

        for name in MESSAGE_FLAG_KEYS:
            if isinstance(raw_message.get(name), bool):
                return raw_message[name]

        sender = _first_present(raw_message, SENDER_RECORD_KEYS)
        if isinstance(sender, Mapping):
            for name in SENDER_FLAG_KEYS:
                if isinstance(sender.get(name), bool):
                    return sender[name]
            role = role_from_text(_first_present(sender, SENDER_ROLE_KEYS))
            if role is not None:
                return role

        role = role_from_text(_first_present(raw_message, MESSAGE_ROLE_KEYS))
        if role is not None:
            return role

        if sender_id:
            if sender_id in known_professional_ids:
                return True
            # Closed world once any professional is known
            if known_professional_ids:
                return False

        return None


identity_resolver = IdentityResolver()
