"""Testes da carteira em memória (cobrança atômica e idempotente)."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from advisor_billing.domain.errors import ValidationError
from advisor_billing.domain.models import TransactionType
from advisor_billing.infra.wallet_memory import InMemoryWallet


@pytest.fixture()
def wallet() -> InMemoryWallet:
    w = InMemoryWallet(commission_rate=Decimal("0.20"))
    w.seed("client", "5.00")
    return w


@pytest.mark.asyncio
async def test_charge_debits_client_and_credits_advisor_net(wallet: InMemoryWallet) -> None:
    result = await wallet.apply_charge(
        "client", "advisor", Decimal("4.00"), reference_id="s1", idempotency_key="s1:1"
    )

    assert result.committed is True
    assert result.balance_after == Decimal("1.00")
    assert result.amount == Decimal("4.00")
    assert await wallet.get_balance("advisor") == Decimal("3.20")
    types = [(t.user_id, t.type, t.amount) for t in wallet.ledger]
    assert types == [
        ("client", TransactionType.SESSION_PAYMENT, Decimal("4.00")),
        ("advisor", TransactionType.EARNING, Decimal("3.20")),
    ]


@pytest.mark.asyncio
async def test_insufficient_balance_changes_nothing(wallet: InMemoryWallet) -> None:
    result = await wallet.apply_charge(
        "client", "advisor", Decimal("6.00"), reference_id="s1", idempotency_key="s1:1"
    )

    assert result.committed is False
    assert result.balance_after == Decimal("5.00")
    assert wallet.ledger == []
    assert await wallet.get_balance("advisor") == Decimal("0.00")


@pytest.mark.asyncio
async def test_same_key_is_applied_once(wallet: InMemoryWallet) -> None:
    first = await wallet.apply_charge(
        "client", "advisor", Decimal("2.00"), reference_id="s1", idempotency_key="s1:1"
    )
    second = await wallet.apply_charge(
        "client", "advisor", Decimal("2.00"), reference_id="s1", idempotency_key="s1:1"
    )

    assert second.replayed is True
    assert second.balance_after == first.balance_after == Decimal("3.00")
    assert len(wallet.ledger) == 2


@pytest.mark.asyncio
async def test_concurrent_charges_never_overdraw(wallet: InMemoryWallet) -> None:
    results = await asyncio.gather(
        *(
            wallet.apply_charge(
                "client", "advisor", Decimal("2.00"), reference_id="s1", idempotency_key=f"s1:{i}"
            )
            for i in range(1, 5)
        )
    )

    assert sum(r.committed for r in results) == 2
    assert await wallet.get_balance("client") == Decimal("1.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00")])
async def test_non_positive_charge_is_rejected(wallet: InMemoryWallet, amount: Decimal) -> None:
    with pytest.raises(ValidationError):
        await wallet.apply_charge(
            "client", "advisor", amount, reference_id="s1", idempotency_key="s1:1"
        )


@pytest.mark.asyncio
async def test_credit_records_top_up(wallet: InMemoryWallet) -> None:
    balance = await wallet.credit("client", Decimal("10"))

    assert balance == Decimal("15.00")
    assert wallet.ledger[-1].type == TransactionType.TOP_UP


@pytest.mark.asyncio
async def test_transactions_for_filters_by_session(wallet: InMemoryWallet) -> None:
    await wallet.apply_charge(
        "client", "advisor", Decimal("1.00"), reference_id="s1", idempotency_key="s1:1"
    )
    await wallet.apply_charge(
        "client", "advisor", Decimal("1.00"), reference_id="s2", idempotency_key="s2:1"
    )

    entries = await wallet.transactions_for("s1")
    assert {t.reference_id for t in entries} == {"s1"}
    assert len(entries) == 2
