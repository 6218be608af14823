"""Ciclo de vida da sessão: status, ações e transições.

Exporta:
- SessionStatus: 4 status
- SessionAction: 5 ações
- validate_transition: validador puro
"""

from advisor_billing.domain.session.events import SessionAction
from advisor_billing.domain.session.states import (
    NON_TERMINAL_STATES,
    TERMINAL_STATES,
    SessionStatus,
)
from advisor_billing.domain.session.transitions import (
    ALLOWED_STATUS_CHANGES,
    TRANSITIONS,
    is_allowed_change,
    validate_transition,
)

__all__ = [
    "SessionStatus",
    "SessionAction",
    "validate_transition",
    "is_allowed_change",
    "ALLOWED_STATUS_CHANGES",
    "TRANSITIONS",
    "TERMINAL_STATES",
    "NON_TERMINAL_STATES",
]
