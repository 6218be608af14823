"""Logging estruturado do serviço.

Todo record recebe ``service`` e ``correlation_id``; em produção a
saída é JSON (python-json-logger), em dev pode ser texto.
"""

from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter

from advisor_billing.observability.middleware import get_correlation_id

_JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s %(correlation_id)s %(service)s"
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Anexa service e correlation_id a cada record.

    Um correlation_id passado explicitamente em ``extra`` tem precedência
    sobre o do contexto. Saldos de terceiros e PII nunca vão para ``extra``.
    """

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        record.service = self.service_name
        return True


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format.lower() == "text":
        return logging.Formatter(_TEXT_FORMAT)
    return JsonFormatter(_JSON_FIELDS, rename_fields={"levelname": "level", "name": "logger"})


def configure_logging(level: str, service_name: str, log_format: str = "json") -> None:
    """Substitui os handlers do root por um único stream handler filtrado."""

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter(log_format))
    handler.addFilter(CorrelationIdFilter(service_name))
    handler.setLevel(level)

    logging.basicConfig(level=level, handlers=[handler], force=True)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def short_id(value: str) -> str:
    """Prefixo de 8 caracteres para ids em logs (session_id, user_id)."""

    return f"{value[:8]}..."
