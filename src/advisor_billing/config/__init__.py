"""Configuração do advisor_billing (env vars via pydantic-settings)."""

from advisor_billing.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
