"""Tabela de transições do ciclo de vida.

- TRANSITIONS[(current_status, action)] = next_status
- Status terminais não aparecem como origem
- Validação pura: sem side effects
"""

from __future__ import annotations

from advisor_billing.domain.session.events import SessionAction
from advisor_billing.domain.session.states import TERMINAL_STATES, SessionStatus

TRANSITIONS: dict[tuple[SessionStatus, SessionAction], SessionStatus] = {
    # === PENDING_APPROVAL → ... ===
    (SessionStatus.PENDING_APPROVAL, SessionAction.ACCEPT): SessionStatus.IN_PROGRESS,
    (SessionStatus.PENDING_APPROVAL, SessionAction.DECLINE): SessionStatus.CANCELLED,
    (SessionStatus.PENDING_APPROVAL, SessionAction.CLIENT_CANCEL): SessionStatus.CANCELLED,
    # === IN_PROGRESS → ... ===
    (SessionStatus.IN_PROGRESS, SessionAction.END): SessionStatus.COMPLETED,
    (SessionStatus.IN_PROGRESS, SessionAction.FORCE_END): SessionStatus.CANCELLED,
    # === Status terminais: SEM transições de saída ===
}

ALLOWED_STATUS_CHANGES: frozenset[tuple[SessionStatus, SessionStatus]] = frozenset(
    (current, target) for (current, _), target in TRANSITIONS.items()
)
"""Pares (origem, destino) aceitos pelo session store."""


def validate_transition(
    current_status: SessionStatus, action: SessionAction
) -> tuple[bool, SessionStatus | None, str]:
    """Valida se uma transição é permitida.

    Retorna:
    - (True, next_status, ""): transição válida
    - (False, None, motivo): transição inválida

    Nunca lança exceção; apenas valida.
    """
    if current_status in TERMINAL_STATES:
        return (
            False,
            None,
            f"Terminal status {current_status} has no transitions",
        )

    key = (current_status, action)
    if key not in TRANSITIONS:
        return (
            False,
            None,
            f"No transition from {current_status} on action {action}",
        )

    return True, TRANSITIONS[key], ""


def is_allowed_change(current: SessionStatus, target: SessionStatus) -> bool:
    """True se o par (origem, destino) existe na tabela."""

    return (current, target) in ALLOWED_STATUS_CHANGES
