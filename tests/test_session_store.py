import asyncio

import pytest

from session_store import ExpiringStore, new_token, sweep_forever


def test_get_before_and_after_expiry(clock):
    store = ExpiringStore("otp", 300, clock)
    store.set("a@example.com", {"otp": "123456"})
    assert store.get("a@example.com") == {"otp": "123456"}
    clock.advance(300)
    assert store.get("a@example.com") is None
    assert "a@example.com" not in store


def test_is_expired_leaves_entry_in_place(clock):
    store = ExpiringStore("otp", 10, clock)
    store.set("k", 1)
    assert not store.is_expired("k")
    clock.advance(11)
    assert store.is_expired("k")
    assert len(store) == 1
    store.discard("k")
    assert len(store) == 0
    assert not store.is_expired("missing")


def test_pop_is_single_use(clock):
    store = ExpiringStore("oauth state", 600, clock)
    store.set("state", {"workspace": "https://x"})
    assert store.pop("state") == {"workspace": "https://x"}
    assert store.pop("state") is None


def test_per_entry_ttl_and_sweep(clock):
    store = ExpiringStore("session", 100, clock)
    store.set("short", 1, ttl=5)
    store.set("long", 2)
    assert store.expires_at("short") == clock.now + 5
    clock.advance(10)
    assert store.sweep() == 1
    assert len(store) == 1
    assert store.get("long") == 2


def test_new_token_is_unique():
    assert new_token() != new_token()


async def test_sweep_forever_purges_on_interval(clock):
    store = ExpiringStore("session", 1, clock)
    store.set("k", 1)
    clock.advance(2)
    task = asyncio.create_task(sweep_forever([store], 0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(store) == 0
