"""Dependências injetadas nas rotas."""

from __future__ import annotations

from fastapi import Request

from advisor_billing.application.event_consumer import RealtimeEventConsumer
from advisor_billing.application.lifecycle import SessionLifecycleController
from advisor_billing.application.notifications.hub import NotificationHub
from advisor_billing.config.settings import Settings


def get_settings(request: Request) -> Settings:
    """Retorna settings da aplicação."""

    return request.app.state.settings


def get_lifecycle(request: Request) -> SessionLifecycleController:
    """Retorna o controlador de ciclo de vida das sessões."""

    return request.app.state.lifecycle


def get_notification_hub(request: Request) -> NotificationHub:
    return request.app.state.notification_hub


def get_event_consumer(request: Request) -> RealtimeEventConsumer:
    """Consumidor de eventos em tempo real (dedupe + último snapshot)."""

    return request.app.state.event_consumer
