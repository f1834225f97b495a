from datetime import datetime, timedelta

import pytest

from filegate.errors import RateLimited
from filegate.rate_limiter import DatabaseCounterStore, MemoryCounterStore, RateLimiter, LIMITS


class BrokenStore:
    def hit(self, key, window, now=None):
        raise RuntimeError('counter store unavailable')


def test_limits_table():
    assert (LIMITS['general'].window, LIMITS['general'].max_calls) == (900, 100)
    assert (LIMITS['auth'].window, LIMITS['auth'].max_calls) == (900, 5)
    assert (LIMITS['upload'].window, LIMITS['upload'].max_calls) == (3600, 10)
    assert (LIMITS['download'].window, LIMITS['download'].max_calls) == (900, 50)


def test_sixth_auth_attempt_is_limited():
    limiter = RateLimiter(MemoryCounterStore())
    now = datetime(2026, 1, 1, 12, 0, 0)
    for _ in range(5):
        limiter.check('auth', '10.0.0.1', now=now)
    with pytest.raises(RateLimited) as exc:
        limiter.check('auth', '10.0.0.1', now=now + timedelta(minutes=5))
    assert exc.value.retry_after == 600


def test_rejected_attempts_still_count():
    store = MemoryCounterStore()
    limiter = RateLimiter(store)
    now = datetime(2026, 1, 1, 12, 0, 0)
    for _ in range(8):
        try:
            limiter.check('auth', '10.0.0.1', now=now)
        except RateLimited:
            pass
    assert store.counters['auth:10.0.0.1'][0] == 8


def test_window_expiry_resets_counter():
    store = MemoryCounterStore()
    limiter = RateLimiter(store)
    now = datetime(2026, 1, 1, 12, 0, 0)
    for _ in range(6):
        try:
            limiter.check('auth', '10.0.0.1', now=now)
        except RateLimited:
            pass
    limiter.check('auth', '10.0.0.1', now=now + timedelta(minutes=15, seconds=1))
    assert store.counters['auth:10.0.0.1'][0] == 1


def test_addresses_and_classes_are_independent():
    limiter = RateLimiter(MemoryCounterStore())
    now = datetime(2026, 1, 1, 12, 0, 0)
    for _ in range(5):
        limiter.check('auth', '10.0.0.1', now=now)
    limiter.check('auth', '10.0.0.2', now=now)
    limiter.check('download', '10.0.0.1', now=now)


def test_disabled_limiter_never_blocks():
    limiter = RateLimiter(BrokenStore(), enabled=False)
    for _ in range(10):
        limiter.check('auth', '10.0.0.1')


def test_store_failure_policy():
    RateLimiter(BrokenStore(), fail_open=True).check('auth', '10.0.0.1')
    with pytest.raises(RateLimited):
        RateLimiter(BrokenStore(), fail_open=False).check('auth', '10.0.0.1')


def test_database_store_shares_counters(app):
    now = datetime(2026, 1, 1, 12, 0, 0)
    # two limiters over the same table behave like two workers
    first = RateLimiter(DatabaseCounterStore(app.db_session.session_factory))
    second = RateLimiter(DatabaseCounterStore(app.db_session.session_factory))
    for i in range(5):
        (first if i % 2 else second).check('auth', '10.0.0.9', now=now)
    with pytest.raises(RateLimited):
        first.check('auth', '10.0.0.9', now=now)


def test_database_store_prunes_expired(app):
    store = DatabaseCounterStore(app.db_session.session_factory)
    now = datetime(2026, 1, 1, 12, 0, 0)
    assert store.hit('auth:a', 60, now=now)[0] == 1
    assert store.hit('auth:a', 60, now=now)[0] == 2
    count, expires_at = store.hit('auth:a', 60, now=now + timedelta(seconds=61))
    assert count == 1
    assert expires_at == now + timedelta(seconds=121)
