"""Aritmética monetária (Decimal, centavos, ROUND_HALF_UP)."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | str) -> Decimal:
    """Normaliza um valor para Decimal com 2 casas."""

    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    """Converte valor monetário para centavos inteiros."""

    return int(to_money(value) * 100)


def from_cents(cents: int | str) -> Decimal:
    """Converte centavos inteiros para valor monetário."""

    return to_money(Decimal(int(cents)) / 100)


def advisor_share(amount: Decimal, commission_rate: Decimal) -> Decimal:
    """Parcela creditada ao consultor após a comissão da plataforma."""

    return to_money(amount * (Decimal("1") - commission_rate))
