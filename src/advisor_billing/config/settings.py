"""Configurações do núcleo de sessões e cobrança (env vars).

Valores monetários são Decimal; REDIS_URL nunca tem default.
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# Valores de backend aceitos por colaborador
STORE_BACKENDS: frozenset[str] = frozenset({"memory", "redis"})
REALTIME_BACKENDS: frozenset[str] = frozenset({"memory", "redis", "websocket"})


class Settings(BaseSettings):
    """Configurações lidas do ambiente."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    # Aplicação
    service_name: str = "advisor_billing"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"

    # Observabilidade
    log_format: str = "json"  # json | text
    correlation_id_header: str = "X-Correlation-ID"

    # Cobrança
    min_funding_threshold: Decimal = Decimal("3.00")  # Saldo mínimo para solicitar/aceitar
    billing_interval_seconds: int = 60  # Cadência dos ticks; a cobrança é sempre por minuto cheio
    billing_grace_seconds: float = 5.0  # Retenção do registro inativo
    platform_commission_rate: Decimal = Decimal("0.20")  # Parcela da plataforma
    settle_partial_minute_on_end: bool = True  # Cobra o minuto parcial no encerramento
    charge_idempotency_ttl_seconds: int = 86400  # Retenção das chaves de cobrança

    # Finalização da sessão
    finalize_max_retries: int = 3
    finalize_retry_backoff_seconds: float = 0.2

    # Backends dos colaboradores
    session_store_backend: str = "memory"  # memory | redis
    wallet_backend: str = "memory"  # memory | redis
    advisor_directory_backend: str = "memory"  # memory | redis
    realtime_backend: str = "memory"  # memory | redis | websocket
    realtime_channel_prefix: str = "realtime:"
    redis_url: str | None = None

    # Deduplicação de eventos (lado consumidor)
    dedupe_backend: str = "memory"  # memory | redis
    dedupe_ttl_seconds: int = 3600

    def validate_session_store_config(self) -> list[str]:
        """Valida backend de session store por ambiente.

        Em staging/prod, memory é proibido (instâncias sem estado compartilhado).
        Retorna lista de erros (vazia = tudo OK).
        """
        return self._validate_backend(
            "SESSION_STORE_BACKEND", self.session_store_backend, STORE_BACKENDS
        )

    def validate_wallet_config(self) -> list[str]:
        """Valida backend da carteira (saldo e ledger)."""
        return self._validate_backend("WALLET_BACKEND", self.wallet_backend, STORE_BACKENDS)

    def validate_advisor_directory_config(self) -> list[str]:
        """Valida backend do diretório de consultores (tarifas)."""
        return self._validate_backend(
            "ADVISOR_DIRECTORY_BACKEND", self.advisor_directory_backend, STORE_BACKENDS
        )

    def validate_realtime_config(self) -> list[str]:
        """Valida backend do canal de eventos em tempo real."""
        return self._validate_backend(
            "REALTIME_BACKEND", self.realtime_backend, REALTIME_BACKENDS
        )

    def validate_dedupe_backend(self) -> list[str]:
        """Valida backend de dedupe (idempotência de eventos)."""
        return self._validate_backend("DEDUPE_BACKEND", self.dedupe_backend, STORE_BACKENDS)

    def validate_billing_config(self) -> list[str]:
        """Valida parâmetros numéricos de cobrança."""
        errors: list[str] = []
        if self.billing_interval_seconds <= 0:
            errors.append("BILLING_INTERVAL_SECONDS deve ser > 0")
        elif 60 % self.billing_interval_seconds:
            # Ticks fora do minuto cheio somariam arredondamentos para cima.
            errors.append("BILLING_INTERVAL_SECONDS deve dividir 60 (ex.: 10, 15, 30, 60)")
        if self.billing_grace_seconds < 0:
            errors.append("BILLING_GRACE_SECONDS deve ser >= 0")
        if not Decimal("0") <= self.platform_commission_rate < Decimal("1"):
            errors.append("PLATFORM_COMMISSION_RATE deve estar entre 0 (inclusive) e 1")
        if self.min_funding_threshold < 0:
            errors.append("MIN_FUNDING_THRESHOLD não pode ser negativo")
        if self.finalize_max_retries < 1:
            errors.append("FINALIZE_MAX_RETRIES deve ser >= 1")
        return errors

    def validate_all(self) -> list[str]:
        """Agrega todas as validações (vazia = configuração utilizável)."""
        errors: list[str] = []
        errors.extend(self.validate_session_store_config())
        errors.extend(self.validate_wallet_config())
        errors.extend(self.validate_advisor_directory_config())
        errors.extend(self.validate_realtime_config())
        errors.extend(self.validate_dedupe_backend())
        errors.extend(self.validate_billing_config())
        return errors

    def _validate_backend(self, name: str, value: str, valid: frozenset[str]) -> list[str]:
        errors: list[str] = []
        backend = value.lower()

        if backend not in valid:
            errors.append(f"{name} '{backend}' inválido. Valores válidos: {sorted(valid)}")

        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append(
                f"{name}=memory é proibido em staging/production. "
                "Configure 'redis' para instâncias sem estado compartilhado."
            )

        if backend == "redis" and not self.redis_url:
            errors.append(f"{name}=redis requer REDIS_URL configurado")

        return errors

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_staging(self) -> bool:
        """Retorna True se ambiente é staging."""
        return self.environment.lower() in ("staging", "stage")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings lidas uma única vez por processo (limpar com cache_clear em testes)."""
    return Settings()
