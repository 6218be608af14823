"""Cobrança por minuto: registro, motor e modelos efêmeros."""

from advisor_billing.application.billing.engine import BillingEngine
from advisor_billing.application.billing.models import (
    BillingSession,
    BillingStatus,
    BillingSummary,
    CycleOutcome,
)
from advisor_billing.application.billing.registry import BillingRegistry

__all__ = [
    "BillingEngine",
    "BillingRegistry",
    "BillingSession",
    "BillingStatus",
    "BillingSummary",
    "CycleOutcome",
]
