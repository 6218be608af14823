"""Testes dos adaptadores de canal → SessionAnnouncement."""

from __future__ import annotations

import pytest

from advisor_billing.application.notifications.announcements import (
    CHANGE_FEED_CHANNEL,
    SOCKET_EVENT_NAMES,
    from_change_feed,
    from_socket_event,
    translate,
)
from advisor_billing.domain.errors import ValidationError
from advisor_billing.domain.models import Modality


@pytest.mark.parametrize("event_name", sorted(SOCKET_EVENT_NAMES))
def test_every_socket_event_name_maps_to_the_same_announcement(event_name: str) -> None:
    announcement = from_socket_event(
        event_name, {"session_id": "s1", "client_id": "c1", "advisor_id": "a1"}
    )
    assert (announcement.session_id, announcement.client_id, announcement.advisor_id) == (
        "s1",
        "c1",
        "a1",
    )
    assert announcement.channel == event_name


def test_camel_case_payload_is_accepted() -> None:
    announcement = from_socket_event(
        "incoming_chat_request",
        {
            "sessionId": "s1",
            "clientId": "c1",
            "advisorId": "a1",
            "clientName": "Ana",
            "initialMessage": "olá",
            "modality": "voice",
        },
    )
    assert announcement.client_name == "Ana"
    assert announcement.initial_message == "olá"
    assert announcement.modality == Modality.VOICE


def test_unknown_socket_event_is_rejected() -> None:
    with pytest.raises(ValidationError):
        from_socket_event("chat_message", {"session_id": "s1"})


def test_incomplete_payload_is_rejected() -> None:
    with pytest.raises(ValidationError):
        translate("chat_request", {"session_id": "s1", "client_id": "c1"})


def test_invalid_modality_is_rejected() -> None:
    with pytest.raises(ValidationError):
        translate(
            "chat_request",
            {"session_id": "s1", "client_id": "c1", "advisor_id": "a1", "modality": "fax"},
        )


def test_change_feed_insert_of_pending_session() -> None:
    announcement = from_change_feed(
        {
            "eventType": "INSERT",
            "table": "sessions",
            "new": {"id": "s1", "client_id": "c1", "advisor_id": "a1", "status": "pending_approval"},
        }
    )
    assert announcement is not None
    assert announcement.channel == CHANGE_FEED_CHANNEL


@pytest.mark.parametrize(
    "change",
    [
        {"eventType": "UPDATE", "new": {"id": "s1"}},
        {"eventType": "INSERT", "table": "transactions", "new": {"id": "t1"}},
        {
            "eventType": "INSERT",
            "new": {"id": "s1", "client_id": "c1", "advisor_id": "a1", "status": "in_progress"},
        },
    ],
)
def test_other_changes_are_ignored(change: dict) -> None:
    assert from_change_feed(change) is None


def test_change_feed_insert_without_record_is_rejected() -> None:
    with pytest.raises(ValidationError):
        from_change_feed({"eventType": "INSERT", "table": "sessions"})
