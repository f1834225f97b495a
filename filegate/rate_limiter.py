import logging
import math
from collections import namedtuple
from datetime import datetime, timedelta
from threading import Lock

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from .errors import RateLimited
from .models import RateLimitCounter

logger = logging.getLogger(__name__)

Limit = namedtuple('Limit', ['window', 'max_calls', 'message'])

LIMITS = {
    'general': Limit(15 * 60, 100, 'Too many requests, please try again later'),
    'auth': Limit(15 * 60, 5, 'Too many login attempts, please try again later'),
    'upload': Limit(60 * 60, 10, 'Upload limit reached, please try again later'),
    'download': Limit(15 * 60, 50, 'Download limit reached, please try again later'),
    'legacy': Limit(10 * 60, 5, 'Too many attempts, please try again in a few minutes'),
}


class MemoryCounterStore:
    """Per-process counters. Only for tests and single-worker development."""

    def __init__(self):
        self.counters = {}  # key -> [count, expires_at]
        self.lock = Lock()

    def hit(self, key: str, window: int, now: datetime = None):
        now = now or datetime.utcnow()
        with self.lock:
            for k in [k for k, (_, exp) in self.counters.items() if exp <= now]:
                del self.counters[k]
            entry = self.counters.get(key)
            if entry is None:
                entry = self.counters[key] = [0, now + timedelta(seconds=window)]
            entry[0] += 1
            return entry[0], entry[1]


class DatabaseCounterStore:
    """Counters in the ``rate_limit_counters`` table, shared by all workers.

    The increment is a single conditional UPDATE; a missing row is created
    with an INSERT that the primary key makes race-safe.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _increment(self, sess, key, now):
        res = sess.execute(
            update(RateLimitCounter)
            .where(RateLimitCounter.key == key, RateLimitCounter.expires_at > now)
            .values(count=RateLimitCounter.count + 1)
        )
        return res.rowcount

    def hit(self, key: str, window: int, now: datetime = None):
        now = now or datetime.utcnow()
        sess = self.session_factory()
        try:
            sess.execute(delete(RateLimitCounter).where(RateLimitCounter.expires_at <= now))
            if not self._increment(sess, key, now):
                sess.add(RateLimitCounter(key=key, count=1, expires_at=now + timedelta(seconds=window)))
                try:
                    sess.flush()
                except IntegrityError:
                    # another worker created the row first
                    sess.rollback()
                    self._increment(sess, key, now)
            row = sess.execute(
                select(RateLimitCounter.count, RateLimitCounter.expires_at)
                .where(RateLimitCounter.key == key)
            ).one()
            sess.commit()
            return row.count, row.expires_at
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()


class RateLimiter:

    def __init__(self, store, limits=None, enabled=True, fail_open=True):
        self.store = store
        self.limits = dict(LIMITS if limits is None else limits)
        self.enabled = enabled
        self.fail_open = fail_open

    def check(self, limit_name: str, client: str, now: datetime = None):
        """Count one attempt by ``client`` and raise RateLimited past the cap.

        Every call counts, including ones that end up rejected.
        """
        if not self.enabled:
            return
        limit = self.limits[limit_name]
        key = f"{limit_name}:{client or 'unknown'}"
        now = now or datetime.utcnow()
        try:
            count, expires_at = self.store.hit(key, limit.window, now=now)
        except Exception:
            logger.exception('rate limiter store failed', extra={'limit': limit_name})
            if self.fail_open:
                return
            raise RateLimited(limit.message, retry_after=limit.window)
        if count > limit.max_calls:
            retry_after = max(1, math.ceil((expires_at - now).total_seconds()))
            raise RateLimited(limit.message, retry_after=retry_after)
