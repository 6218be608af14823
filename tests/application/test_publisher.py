"""Testes do EventPublisher (entrega best-effort)."""

from __future__ import annotations

import pytest

from advisor_billing.application.publisher import EventPublisher
from advisor_billing.domain.events import BillingStop, SessionEnded
from advisor_billing.infra.realtime_memory import InMemoryRealtimeChannel


@pytest.mark.asyncio
async def test_publishes_in_order() -> None:
    channel = InMemoryRealtimeChannel()
    publisher = EventPublisher(channel)

    delivered = await publisher.publish(
        BillingStop(session_id="s1", room="s1"),
        SessionEnded(session_id="s1", room="s1", ended_by="c1"),
    )

    assert delivered == 2
    assert [e.type for e in channel.published] == ["billing_stop", "session_ended"]


@pytest.mark.asyncio
async def test_transport_failure_is_absorbed() -> None:
    channel = InMemoryRealtimeChannel()
    channel.fail_publishes = True
    publisher = EventPublisher(channel)

    delivered = await publisher.publish(BillingStop(session_id="s1", room="s1"))

    assert delivered == 0
    assert channel.published == []
