"""Camada de infraestrutura: adapters para colaboradores externos.

Este módulo exporta as factories principais:

- Session store: create_session_store (memory | redis)
- Carteira: create_wallet (memory | redis)
- Diretório de consultores: create_advisor_directory
- Canal em tempo real: create_realtime_channel (memory | redis | websocket)
- Dedupe de eventos: create_dedupe_store
"""

from advisor_billing.infra.dedupe import create_dedupe_store
from advisor_billing.infra.realtime import create_realtime_channel
from advisor_billing.infra.session_store import (
    create_advisor_directory,
    create_session_store,
    create_wallet,
)

__all__ = [
    "create_advisor_directory",
    "create_dedupe_store",
    "create_realtime_channel",
    "create_session_store",
    "create_wallet",
]
