from __future__ import annotations

from decimal import Decimal

import pytest

from advisor_billing.application.billing.engine import BillingEngine
from advisor_billing.application.lifecycle import SessionLifecycleController
from advisor_billing.application.publisher import EventPublisher
from advisor_billing.config.settings import Settings, get_settings
from advisor_billing.infra.advisor_directory import InMemoryAdvisorDirectory
from advisor_billing.infra.realtime_memory import InMemoryRealtimeChannel
from advisor_billing.infra.session_store_memory import InMemorySessionStore
from advisor_billing.infra.wallet_memory import InMemoryWallet
from tests.helpers.billing import ADVISOR_ID, ManualClock, no_sleep


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(finalize_retry_backoff_seconds=0)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def wallet(settings: Settings) -> InMemoryWallet:
    return InMemoryWallet(commission_rate=settings.platform_commission_rate)


@pytest.fixture()
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def directory() -> InMemoryAdvisorDirectory:
    return InMemoryAdvisorDirectory({ADVISOR_ID: Decimal("2.00")})


@pytest.fixture()
def channel() -> InMemoryRealtimeChannel:
    return InMemoryRealtimeChannel()


@pytest.fixture()
def publisher(channel: InMemoryRealtimeChannel) -> EventPublisher:
    return EventPublisher(channel)


@pytest.fixture()
def engine(wallet, session_store, publisher, settings, clock) -> BillingEngine:
    return BillingEngine(
        wallet,
        session_store,
        publisher,
        settings=settings,
        clock=clock,
        sleep=no_sleep,
        auto_schedule=False,
    )


@pytest.fixture()
def lifecycle(
    session_store, wallet, directory, engine, publisher, settings, clock
) -> SessionLifecycleController:
    return SessionLifecycleController(
        session_store,
        wallet,
        directory,
        engine,
        publisher,
        settings=settings,
        clock=clock,
    )
