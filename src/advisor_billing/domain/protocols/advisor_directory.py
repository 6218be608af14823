"""Contrato do diretório de consultores (tarifa vigente)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal


class AdvisorDirectoryProtocol(ABC):
    """Fonte da tarifa por minuto de cada consultor."""

    @abstractmethod
    async def get_rate(self, advisor_id: str) -> Decimal:
        """Tarifa vigente por minuto.

        Raises:
            ValidationError: Consultor sem tarifa cadastrada
        """
        ...
