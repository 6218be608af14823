"""Re-exports dos Protocolos de domínio para uso por Application."""

from __future__ import annotations

from advisor_billing.domain.protocols.advisor_directory import AdvisorDirectoryProtocol
from advisor_billing.domain.protocols.alerts import AlertHandle, AlertSinkProtocol
from advisor_billing.domain.protocols.realtime import RealtimeChannelProtocol
from advisor_billing.domain.protocols.session_store import SessionStoreProtocol
from advisor_billing.domain.protocols.wallet import WalletProtocol

__all__ = [
    "AdvisorDirectoryProtocol",
    "AlertHandle",
    "AlertSinkProtocol",
    "RealtimeChannelProtocol",
    "SessionStoreProtocol",
    "WalletProtocol",
]
