"""Alertas ao consultor publicados no canal em tempo real."""

from __future__ import annotations

from advisor_billing.application.notifications.announcements import SessionAnnouncement
from advisor_billing.application.publisher import EventPublisher
from advisor_billing.domain.events import AdvisorAlert, AdvisorAlertCancelled
from advisor_billing.domain.protocols.alerts import AlertHandle, AlertSinkProtocol


class RealtimeAlertHandle(AlertHandle):
    """Cancela o alerta publicando `advisor_alert_cancelled` uma única vez."""

    def __init__(self, publisher: EventPublisher, announcement: SessionAnnouncement) -> None:
        self._publisher = publisher
        self._announcement = announcement
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def cancel(self, *, muted: bool = False) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        await self._publisher.publish(
            AdvisorAlertCancelled(
                session_id=self._announcement.session_id,
                room=self._announcement.advisor_id,
                muted=muted,
            )
        )


class RealtimeAlertSink(AlertSinkProtocol):
    """Dispara `advisor_alert` na sala do consultor."""

    def __init__(self, publisher: EventPublisher) -> None:
        self._publisher = publisher

    async def raise_alert(self, announcement: SessionAnnouncement) -> AlertHandle:
        await self._publisher.publish(
            AdvisorAlert(
                session_id=announcement.session_id,
                room=announcement.advisor_id,
                client_id=announcement.client_id,
            )
        )
        return RealtimeAlertHandle(self._publisher, announcement)
