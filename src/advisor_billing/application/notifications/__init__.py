"""Notificações ao consultor: anúncios, deduplicação e arbitragem accept/decline."""

from advisor_billing.application.notifications.announcements import (
    SOCKET_EVENT_NAMES,
    SessionAnnouncement,
    translate,
)
from advisor_billing.application.notifications.coordinator import (
    AnnounceOutcome,
    NotificationCoordinator,
    ResolutionOutcome,
)
from advisor_billing.application.notifications.hub import NotificationHub

__all__ = [
    "SOCKET_EVENT_NAMES",
    "AnnounceOutcome",
    "NotificationCoordinator",
    "NotificationHub",
    "ResolutionOutcome",
    "SessionAnnouncement",
    "translate",
]
