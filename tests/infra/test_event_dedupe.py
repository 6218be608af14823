"""Testes dos stores de dedupe de eventos e da factory."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import redis

from advisor_billing.config.settings import Settings
from advisor_billing.infra.dedupe import (
    DedupeError,
    InMemoryDedupeStore,
    RedisDedupeStore,
    create_dedupe_store,
)


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


class TestInMemoryDedupeStore:
    def test_second_claim_is_duplicate(self) -> None:
        store = InMemoryDedupeStore()
        assert store.claim("s1:billing_update:1") is True
        assert store.claim("s1:billing_update:1") is False
        assert store.claim("s1:billing_update:2") is True

    def test_contains_does_not_claim(self) -> None:
        store = InMemoryDedupeStore()
        assert store.contains("k") is False
        assert store.claim("k") is True

    def test_keys_expire_after_ttl(self) -> None:
        clock = FakeMonotonic()
        store = InMemoryDedupeStore(ttl_seconds=10, clock=clock)
        store.claim("k")

        clock.value = 10.5
        assert store.contains("k") is False
        assert store.claim("k") is True

    def test_oldest_key_is_dropped_above_capacity(self) -> None:
        store = InMemoryDedupeStore(max_entries=2)
        for key in ("a", "b", "c"):
            store.claim(key)

        assert len(store) == 2
        assert store.contains("a") is False

    def test_release_allows_reprocessing(self) -> None:
        store = InMemoryDedupeStore()
        store.claim("k")
        assert store.release("k") is True
        assert store.release("k") is False
        assert store.claim("k") is True


class TestRedisDedupeStore:
    def test_claim_uses_set_nx_with_ttl(self) -> None:
        client = MagicMock()
        client.set.return_value = True
        store = RedisDedupeStore(client, ttl_seconds=120)

        assert store.claim("s1:session_ended") is True
        client.set.assert_called_once_with("rt-dedupe:s1:session_ended", "1", nx=True, ex=120)

    def test_existing_key_is_duplicate(self) -> None:
        client = MagicMock()
        client.set.return_value = None
        assert RedisDedupeStore(client).claim("k") is False

    def test_fail_closed_raises(self) -> None:
        client = MagicMock()
        client.set.side_effect = redis.ConnectionError("refused")
        with pytest.raises(DedupeError):
            RedisDedupeStore(client, fail_closed=True).claim("k")

    def test_fail_open_lets_event_through(self) -> None:
        client = MagicMock()
        client.set.side_effect = redis.ConnectionError("refused")
        assert RedisDedupeStore(client, fail_closed=False).claim("k") is True

    def test_requires_client_or_url(self) -> None:
        with pytest.raises(ValueError):
            RedisDedupeStore()


class TestCreateDedupeStore:
    def test_memory_backend(self) -> None:
        store = create_dedupe_store(Settings(dedupe_backend="memory"))
        assert isinstance(store, InMemoryDedupeStore)

    def test_redis_backend(self) -> None:
        settings = Settings(dedupe_backend="redis", redis_url="redis://localhost:6379/0")
        assert isinstance(create_dedupe_store(settings), RedisDedupeStore)

    def test_redis_backend_without_url(self) -> None:
        with pytest.raises(ValueError):
            create_dedupe_store(Settings(dedupe_backend="redis"))

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            create_dedupe_store(Settings(dedupe_backend="firestore"))
