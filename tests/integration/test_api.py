"""Testes de integração da API (FastAPI TestClient, backends em memória).

O TestClient é usado como context manager: um único event loop para
todas as requisições e shutdown do lifespan cancelando as tarefas de
cobrança ao final.
"""

from __future__ import annotations

from collections.abc import Iterator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from advisor_billing.api.app import create_app
from advisor_billing.config.settings import Settings
from advisor_billing.domain.events import BillingUpdate, SessionEnded
from tests.helpers.billing import ADVISOR_ID, CLIENT_ID, OTHER_ADVISOR_ID


@pytest.fixture()
def client() -> Iterator[TestClient]:
    app = create_app(Settings(finalize_retry_backoff_seconds=0, log_format="text"))
    app.state.wallet.seed(CLIENT_ID, Decimal("10.00"))
    app.state.advisor_directory.set_rate(ADVISOR_ID, Decimal("2.00"))
    with TestClient(app) as test_client:
        yield test_client


def _create_session(client: TestClient, client_id: str = CLIENT_ID) -> dict:
    response = client.post(
        "/sessions",
        json={"client_id": client_id, "advisor_id": ADVISOR_ID, "initial_message": "oi"},
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "service": "advisor_billing",
            "version": "0.1.0",
        }

    def test_correlation_id_is_echoed(self, client: TestClient) -> None:
        response = client.get("/health", headers={"X-Correlation-ID": "corr-api-1"})
        assert response.headers["x-correlation-id"] == "corr-api-1"


class TestSessionFlow:
    def test_request_accept_end(self, client: TestClient) -> None:
        created = _create_session(client)
        assert created["status"] == "pending_approval"
        assert created["rate_per_minute"] is None

        accepted = client.post(
            f"/sessions/{created['id']}/accept", json={"advisor_id": ADVISOR_ID}
        )
        assert accepted.status_code == 200, accepted.text
        body = accepted.json()
        assert body["outcome"] == "accepted"
        assert body["session"]["status"] == "in_progress"
        assert Decimal(body["session"]["rate_per_minute"]) == Decimal("2.00")

        billing = client.get(f"/sessions/{created['id']}/billing").json()
        assert billing["is_active"] is True
        assert billing["rate_per_minute"] == "2.00"

        ended = client.post(f"/sessions/{created['id']}/end", json={"ended_by": CLIENT_ID})
        assert ended.status_code == 200, ended.text
        final = ended.json()
        assert final["status"] == "completed"
        assert final["end_time"] is not None
        assert final["ended_by"] == CLIENT_ID
        assert final["duration_minutes"] in (0, 1)

    def test_second_end_returns_same_record(self, client: TestClient) -> None:
        created = _create_session(client)
        client.post(f"/sessions/{created['id']}/accept", json={"advisor_id": ADVISOR_ID})

        first = client.post(f"/sessions/{created['id']}/end", json={"ended_by": ADVISOR_ID})
        second = client.post(f"/sessions/{created['id']}/end", json={"ended_by": CLIENT_ID})

        assert first.status_code == second.status_code == 200
        assert second.json() == first.json()

    def test_decline(self, client: TestClient) -> None:
        created = _create_session(client)

        response = client.post(
            f"/sessions/{created['id']}/decline",
            json={"advisor_id": ADVISOR_ID, "reason": "busy"},
        )

        assert response.status_code == 200
        session = response.json()["session"]
        assert session["status"] == "cancelled"
        assert session["cancel_reason"] == "busy"
        assert session["end_time"] is None

    def test_client_cancels_pending_request(self, client: TestClient) -> None:
        created = _create_session(client)

        response = client.post(f"/sessions/{created['id']}/cancel", json={"client_id": CLIENT_ID})

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"


class TestErrors:
    def test_low_balance_is_payment_required(self, client: TestClient) -> None:
        client.app.state.wallet.seed("client-poor", Decimal("1.00"))

        response = client.post(
            "/sessions", json={"client_id": "client-poor", "advisor_id": ADVISOR_ID}
        )

        assert response.status_code == 402
        assert response.json()["detail"]["error"] == "insufficient_funds"

    def test_unknown_session(self, client: TestClient) -> None:
        response = client.get("/sessions/does-not-exist")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "session_not_found"

    def test_self_session_is_rejected(self, client: TestClient) -> None:
        response = client.post("/sessions", json={"client_id": CLIENT_ID, "advisor_id": CLIENT_ID})
        assert response.status_code == 422

    def test_other_advisor_cannot_accept(self, client: TestClient) -> None:
        created = _create_session(client)

        response = client.post(
            f"/sessions/{created['id']}/accept", json={"advisor_id": OTHER_ADVISOR_ID}
        )

        assert response.status_code == 403

    def test_non_participant_cannot_end(self, client: TestClient) -> None:
        created = _create_session(client)
        client.post(f"/sessions/{created['id']}/accept", json={"advisor_id": ADVISOR_ID})

        response = client.post(f"/sessions/{created['id']}/end", json={"ended_by": "intruder"})

        assert response.status_code == 403

    def test_double_accept_is_no_longer_available(self, client: TestClient) -> None:
        created = _create_session(client)
        client.post(f"/sessions/{created['id']}/accept", json={"advisor_id": ADVISOR_ID})

        response = client.post(
            f"/sessions/{created['id']}/accept", json={"advisor_id": ADVISOR_ID}
        )

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "no_longer_available"

    def test_accept_after_balance_drop_is_auto_declined(self, client: TestClient) -> None:
        client.app.state.wallet.seed("client-drop", Decimal("3.00"))
        created = _create_session(client, client_id="client-drop")
        client.app.state.wallet.seed("client-drop", Decimal("0.50"))

        response = client.post(
            f"/sessions/{created['id']}/accept", json={"advisor_id": ADVISOR_ID}
        )

        assert response.status_code == 402
        session = client.get(f"/sessions/{created['id']}").json()
        assert session["status"] == "cancelled"
        assert session["cancel_reason"] == "insufficient_funds"


class TestBalanceCheck:
    def test_default_threshold(self, client: TestClient) -> None:
        response = client.post(f"/wallets/{CLIENT_ID}/balance-check")

        assert response.status_code == 200
        body = response.json()
        assert body["has_sufficient_balance"] is True
        assert Decimal(body["required_amount"]) == Decimal("3.00")

    def test_explicit_amount(self, client: TestClient) -> None:
        response = client.post(
            f"/wallets/{CLIENT_ID}/balance-check", json={"required_amount": "25.00"}
        )

        assert response.json()["has_sufficient_balance"] is False


class TestAnnouncements:
    def test_duplicate_announcements_alert_once(self, client: TestClient) -> None:
        created = _create_session(client)
        payload = {
            "session_id": created["id"],
            "client_id": CLIENT_ID,
            "advisor_id": ADVISOR_ID,
        }

        first = client.post("/announcements/chat_request", json=payload)
        second = client.post("/announcements/new_chat_request", json=payload)

        assert first.json()["outcome"] == "announced"
        assert second.json()["outcome"] == "duplicate"

        muted = client.post(f"/sessions/{created['id']}/mute", json={"advisor_id": ADVISOR_ID})
        assert muted.json() == {"session_id": created["id"], "pending": True}

    def test_unknown_channel_is_unprocessable(self, client: TestClient) -> None:
        response = client.post("/announcements/carrier_pigeon", json={"session_id": "x"})
        assert response.status_code == 422

    def test_change_feed_update_is_ignored(self, client: TestClient) -> None:
        response = client.post(
            "/announcements/change_feed",
            json={"eventType": "UPDATE", "new": {"status": "in_progress"}},
        )
        assert response.json()["outcome"] == "ignored"


class TestEventIngestion:
    @staticmethod
    def _update(seq: int) -> dict:
        return BillingUpdate(
            session_id="sess-evt",
            room="sess-evt",
            seq=seq,
            duration_seconds=seq * 60,
            amount_billed=Decimal(seq * 2),
        ).model_dump(mode="json")

    def test_redelivered_event_is_applied_once(self, client: TestClient) -> None:
        first = client.post("/events", json=self._update(1))
        again = client.post("/events", json=self._update(1))

        assert first.json()["applied"] is True
        assert first.json()["type"] == "billing_update"
        assert again.json()["applied"] is False

    def test_latest_snapshot_keeps_highest_seq(self, client: TestClient) -> None:
        client.post("/events", json=self._update(2))
        client.post("/events", json=self._update(1))

        latest = client.get("/sessions/sess-evt/billing/latest")

        assert latest.status_code == 200
        assert latest.json()["seq"] == 2

    def test_session_end_drops_snapshot(self, client: TestClient) -> None:
        client.post("/events", json=self._update(1))
        ended = SessionEnded(session_id="sess-evt", room="sess-evt", ended_by=CLIENT_ID)
        client.post("/events", json=ended.model_dump(mode="json"))

        assert client.get("/sessions/sess-evt/billing/latest").status_code == 404

    def test_unknown_event_type_is_unprocessable(self, client: TestClient) -> None:
        response = client.post("/events", json={"type": "telepathy", "session_id": "x"})
        assert response.status_code == 422

def test_websocket_requires_websocket_backend(client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/room-1"):
            pass


def test_invalid_configuration_fails_fast() -> None:
    with pytest.raises(ValueError, match="Configuração inválida"):
        create_app(Settings(environment="production", log_format="text"))
