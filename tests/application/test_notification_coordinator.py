"""Testes do NotificationCoordinator/NotificationHub (um alerta por sessão)."""

from __future__ import annotations

import asyncio

import pytest

from advisor_billing.application.notifications.alerts import RealtimeAlertSink
from advisor_billing.application.notifications.announcements import SessionAnnouncement
from advisor_billing.application.notifications.coordinator import (
    AnnounceOutcome,
    ResolutionOutcome,
)
from advisor_billing.application.notifications.hub import NotificationHub
from advisor_billing.domain.errors import UnauthorizedError
from advisor_billing.domain.session.states import SessionStatus
from advisor_billing.infra.dedupe import InMemoryDedupeStore
from tests.helpers.billing import ADVISOR_ID, CLIENT_ID, OTHER_ADVISOR_ID


@pytest.fixture()
def hub(lifecycle, publisher) -> NotificationHub:
    return NotificationHub(lifecycle, RealtimeAlertSink(publisher))


async def _pending(lifecycle, wallet) -> str:
    wallet.seed(CLIENT_ID, "10.00")
    session = await lifecycle.request_session(CLIENT_ID, ADVISOR_ID)
    return session.id


def _socket_payload(session_id: str) -> dict:
    return {"session_id": session_id, "client_id": CLIENT_ID, "advisor_id": ADVISOR_ID}


def _announcement(session_id: str, advisor_id: str = ADVISOR_ID) -> SessionAnnouncement:
    return SessionAnnouncement(session_id=session_id, client_id=CLIENT_ID, advisor_id=advisor_id)


class TestAnnounce:
    @pytest.mark.asyncio
    async def test_three_channels_raise_a_single_alert(self, hub, lifecycle, wallet, channel):
        session_id = await _pending(lifecycle, wallet)
        change = {
            "eventType": "INSERT",
            "table": "sessions",
            "new": {
                "id": session_id,
                "client_id": CLIENT_ID,
                "advisor_id": ADVISOR_ID,
                "status": "pending_approval",
            },
        }

        outcomes = [
            await hub.ingest("chat_request", _socket_payload(session_id)),
            await hub.ingest("new_chat_request", {
                "sessionId": session_id, "clientId": CLIENT_ID, "advisorId": ADVISOR_ID,
            }),
            await hub.ingest("change_feed", change),
        ]

        assert outcomes == [
            AnnounceOutcome.ANNOUNCED,
            AnnounceOutcome.DUPLICATE,
            AnnounceOutcome.DUPLICATE,
        ]
        assert len(channel.events_for(ADVISOR_ID, "advisor_alert")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_announcements_raise_a_single_alert(
        self, hub, lifecycle, wallet, channel
    ):
        session_id = await _pending(lifecycle, wallet)
        coordinator = hub.coordinator_for(ADVISOR_ID)

        outcomes = await asyncio.gather(
            *(coordinator.announce(_announcement(session_id)) for _ in range(3))
        )

        assert sorted(outcomes).count(AnnounceOutcome.ANNOUNCED) == 1
        assert len(channel.of_type("advisor_alert")) == 1

    @pytest.mark.asyncio
    async def test_low_balance_is_declined_without_alert(
        self, hub, lifecycle, wallet, channel, session_store
    ):
        session_id = await _pending(lifecycle, wallet)
        wallet.seed(CLIENT_ID, "1.00")

        outcome = await hub.ingest("chat_request", _socket_payload(session_id))

        assert outcome == AnnounceOutcome.AUTO_DECLINED
        assert channel.of_type("advisor_alert") == []
        stored = await session_store.get(session_id)
        assert stored.status == SessionStatus.CANCELLED
        assert stored.cancel_reason == "insufficient_funds"

    @pytest.mark.asyncio
    async def test_announcement_for_other_advisor_is_ignored(self, hub, lifecycle, wallet):
        session_id = await _pending(lifecycle, wallet)
        coordinator = hub.coordinator_for(OTHER_ADVISOR_ID)
        assert await coordinator.announce(_announcement(session_id)) == AnnounceOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_payload_ids_must_match_the_stored_session(
        self, hub, lifecycle, wallet, channel, session_store
    ):
        session_id = await _pending(lifecycle, wallet)
        forged = {**_socket_payload(session_id), "client_id": "nobody"}

        assert await hub.ingest("chat_request", forged) == AnnounceOutcome.IGNORED
        stored = await session_store.get(session_id)
        assert stored.status == SessionStatus.PENDING_APPROVAL
        assert channel.of_type("advisor_alert") == []

        outcome = await hub.ingest("chat_request", _socket_payload(session_id))
        assert outcome == AnnounceOutcome.ANNOUNCED

    @pytest.mark.asyncio
    async def test_unknown_session_is_ignored(self, hub, channel):
        outcome = await hub.ingest("chat_request", _socket_payload("sess-ghost"))

        assert outcome == AnnounceOutcome.IGNORED
        assert channel.of_type("advisor_alert") == []
        assert len(hub) == 0

    @pytest.mark.asyncio
    async def test_redelivery_after_accept_raises_no_alert(
        self, lifecycle, wallet, publisher, channel
    ):
        session_id = await _pending(lifecycle, wallet)
        await lifecycle.accept_session(session_id, advisor_id=ADVISOR_ID)
        fresh_hub = NotificationHub(lifecycle, RealtimeAlertSink(publisher))

        outcome = await fresh_hub.ingest("chat_request", _socket_payload(session_id))

        assert outcome == AnnounceOutcome.DUPLICATE
        assert channel.of_type("advisor_alert") == []

    @pytest.mark.asyncio
    async def test_non_insert_changes_are_ignored(self, hub):
        outcome = await hub.ingest("change_feed", {"eventType": "UPDATE", "new": {}})
        assert outcome == AnnounceOutcome.IGNORED


class TestResolution:
    @pytest.mark.asyncio
    async def test_mute_silences_but_keeps_request_pending(self, hub, lifecycle, wallet, channel):
        session_id = await _pending(lifecycle, wallet)
        coordinator = hub.coordinator_for(ADVISOR_ID)
        await coordinator.announce(_announcement(session_id))

        assert await coordinator.mute(session_id) is True
        assert coordinator.is_pending(session_id)
        assert not coordinator.is_alerting(session_id)
        cancelled = channel.of_type("advisor_alert_cancelled")
        assert [e.muted for e in cancelled] == [True]

        assert await coordinator.accept(session_id) == ResolutionOutcome.ACCEPTED
        assert len(channel.of_type("advisor_alert_cancelled")) == 1

    @pytest.mark.asyncio
    async def test_accept_clears_alert_and_starts_session(
        self, hub, lifecycle, wallet, channel, engine
    ):
        session_id = await _pending(lifecycle, wallet)
        coordinator = hub.coordinator_for(ADVISOR_ID)
        await coordinator.announce(_announcement(session_id))

        assert await coordinator.accept(session_id) == ResolutionOutcome.ACCEPTED
        assert not coordinator.is_pending(session_id)
        assert session_id in engine.registry
        assert [e.muted for e in channel.of_type("advisor_alert_cancelled")] == [False]

    @pytest.mark.asyncio
    async def test_accept_after_client_cancel_is_no_longer_available(
        self, hub, lifecycle, wallet, channel
    ):
        session_id = await _pending(lifecycle, wallet)
        coordinator = hub.coordinator_for(ADVISOR_ID)
        await coordinator.announce(_announcement(session_id))
        await lifecycle.cancel_request(session_id, CLIENT_ID)

        outcome = await coordinator.accept(session_id)

        assert outcome == ResolutionOutcome.NO_LONGER_AVAILABLE
        assert not coordinator.is_pending(session_id)
        assert len(channel.of_type("advisor_alert_cancelled")) == 1

    @pytest.mark.asyncio
    async def test_accept_rechecks_balance(self, hub, lifecycle, wallet, session_store):
        session_id = await _pending(lifecycle, wallet)
        coordinator = hub.coordinator_for(ADVISOR_ID)
        await coordinator.announce(_announcement(session_id))
        wallet.seed(CLIENT_ID, "0.50")

        assert await coordinator.accept(session_id) == ResolutionOutcome.AUTO_DECLINED
        stored = await session_store.get(session_id)
        assert stored.status == SessionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_decline_clears_entry_and_blocks_reannouncement(
        self, hub, lifecycle, wallet, channel
    ):
        session_id = await _pending(lifecycle, wallet)
        coordinator = hub.coordinator_for(ADVISOR_ID)
        await coordinator.announce(_announcement(session_id))

        assert await coordinator.decline(session_id, "busy") == ResolutionOutcome.DECLINED
        assert not coordinator.is_pending(session_id)
        assert channel.events_for(session_id, "chat_rejected")[0].reason == "busy"
        assert await coordinator.announce(_announcement(session_id)) == AnnounceOutcome.DUPLICATE
        assert len(channel.of_type("advisor_alert")) == 1

    @pytest.mark.asyncio
    async def test_close_cancels_every_alert(self, hub, lifecycle, wallet, channel):
        first = await _pending(lifecycle, wallet)
        second = await _pending(lifecycle, wallet)
        await hub.ingest("chat_request", _socket_payload(first))
        await hub.ingest("chat_request", _socket_payload(second))

        await hub.close_all()

        cancelled = channel.of_type("advisor_alert_cancelled")
        assert {e.session_id for e in cancelled} == {first, second}


class TestBoundedState:
    @pytest.mark.asyncio
    async def test_resolved_ids_expire_but_store_still_blocks_realert(
        self, lifecycle, wallet, publisher, channel
    ):
        now = [0.0]
        window = InMemoryDedupeStore(ttl_seconds=60, clock=lambda: now[0])
        hub = NotificationHub(lifecycle, RealtimeAlertSink(publisher), resolved=window)
        session_id = await _pending(lifecycle, wallet)
        await hub.ingest("chat_request", _socket_payload(session_id))

        assert await hub.decline(ADVISOR_ID, session_id) == ResolutionOutcome.DECLINED
        assert window.contains(f"{ADVISOR_ID}:{session_id}")

        now[0] = 61.0
        assert not window.contains(f"{ADVISOR_ID}:{session_id}")
        assert len(window) == 0

        outcome = await hub.ingest("chat_request", _socket_payload(session_id))
        assert outcome == AnnounceOutcome.DUPLICATE
        assert len(channel.of_type("advisor_alert")) == 1

    @pytest.mark.asyncio
    async def test_idle_coordinators_are_released(self, hub, lifecycle, wallet):
        session_id = await _pending(lifecycle, wallet)
        await hub.ingest("chat_request", _socket_payload(session_id))
        assert len(hub) == 1

        assert await hub.accept(ADVISOR_ID, session_id) == ResolutionOutcome.ACCEPTED
        assert len(hub) == 0

    @pytest.mark.asyncio
    async def test_unknown_advisors_do_not_accumulate_coordinators(self, hub, lifecycle, wallet):
        session_id = await _pending(lifecycle, wallet)

        assert await hub.mute("advisor-stranger", session_id) is False
        with pytest.raises(UnauthorizedError):
            await hub.accept(OTHER_ADVISOR_ID, session_id)
        with pytest.raises(UnauthorizedError):
            await hub.decline(OTHER_ADVISOR_ID, session_id)

        assert len(hub) == 0
        assert hub.get(OTHER_ADVISOR_ID) is None
