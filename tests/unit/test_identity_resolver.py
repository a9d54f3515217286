from app.features.service_metrics.pipeline.identity.service import (
    IdentityResolver,
    collect_identifiers_by_key,
    open_scope,
    professional_ids_from_participant_meta,
    role_from_text,
)

resolver = IdentityResolver()


def test_explicit_flag_wins_over_known_identifiers():
    raw = {"senderId": "p1", "isFromProfessional": False}

    assert resolver.resolve_role(raw, "p1", {"p1"}) is False


def test_sender_record_flag_and_role():
    assert resolver.resolve_role({"sender": {"isProfessional": True}}, None, set()) is True
    assert resolver.resolve_role({"author": {"role": "Customer"}}, None, set()) is False


def test_message_role_strings():
    assert resolver.resolve_role({"senderRole": "provider"}, None, set()) is True
    assert resolver.resolve_role({"type": "client_message"}, None, set()) is False
    assert resolver.resolve_role({"role": "system"}, None, set()) is None


def test_known_identifiers_decide_when_no_explicit_signal():
    known = {"p1"}

    assert resolver.resolve_role({"senderId": "p1"}, "p1", known) is True
    assert resolver.resolve_role({"senderId": "u9"}, "u9", known) is False


def test_undecidable_without_signals_or_known_set():
    assert resolver.resolve_role({"senderId": "u9"}, "u9", set()) is None
    assert resolver.resolve_role({"text": "hello"}, None, {"p1"}) is None


def test_role_from_text_keywords():
    assert role_from_text("PROFESSIONAL") is True
    assert role_from_text("end_user") is False
    assert role_from_text(7) is None


def test_collect_identifiers_by_key_scans_nested_records():
    data = {
        "professionalId": 7,
        "meta": {"providerUid": " abc ", "note": "x"},
        "proIds": ["p1", {"id": "p2"}],
        "clientId": "u1",
    }

    assert set(collect_identifiers_by_key(data)) == {"7", "abc", "p1", "p2"}


def test_collect_identifiers_by_key_is_depth_bounded():
    data = {"a": {"b": {"c": {"d": {"professionalId": "deep"}}}}, "proId": "top"}

    assert collect_identifiers_by_key(data) == ["top"]


def test_collect_identifiers_by_key_survives_cycles():
    data = {"proId": "x"}
    data["self"] = data
    data["items"] = [data]

    assert collect_identifiers_by_key(data) == ["x"]


def test_participant_meta_confirms_professionals():
    conversation = {
        "participantsMeta": {
            "p2": {"isProfessional": True},
            "u1": {"isProfessional": False},
            "u2": "unexpected",
        }
    }

    assert professional_ids_from_participant_meta(conversation) == {"p2"}


def test_open_scope_uses_conversation_identifiers_when_present():
    known = {"p1"}
    scope = open_scope(known, {"participants_meta": {"p2": {"professional": True}}})

    assert scope.conversation_scoped is True
    assert scope.identifiers == {"p2"}
    assert known == {"p1", "p2"}


def test_open_scope_shares_known_set_without_metadata():
    known = {"p1"}
    scope = open_scope(known, {"participants": ["p1", "u1"]})
    scope.absorb({"providerId": "p3"})

    assert scope.conversation_scoped is False
    assert scope.identifiers is known
    assert known == {"p1", "p3"}


def test_product_keys_do_not_replace_the_known_set():
    known = {"p1"}
    scope = open_scope(known, {"serviceId": "s1", "productName": "Deep clean"})

    assert scope.conversation_scoped is False
    assert scope.identifiers is known
    assert resolver.resolve_role({"senderId": "p1"}, "p1", scope.identifiers) is True
    assert resolver.resolve_role({"senderId": "u1"}, "u1", scope.identifiers) is False


def test_keyed_identifiers_augment_the_known_set():
    known = {"p1"}
    scope = open_scope(known, {"professionalId": "p9"})

    assert scope.conversation_scoped is False
    assert known == {"p1", "p9"}
