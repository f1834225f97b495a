"""Append-only audit trail.

Writes happen in their own session, outside the request transaction, and
every failure is logged and swallowed: a lost audit row never fails the
operation it describes.
"""
import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait

from .models import AuditAction, AuditLogEntry, TargetType

logger = logging.getLogger(__name__)


class AuditLog:

    def __init__(self, session_factory, asynchronous=True):
        self.session_factory = session_factory
        self.asynchronous = asynchronous
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='audit') if asynchronous else None
        self._pending = set()

    def append(self, actor_user_id, action, target_type=None, target_id=None,
               ip_address=None, metadata=None):
        try:
            entry = dict(
                actor_user_id=actor_user_id,
                action=AuditAction(action),
                target_type=TargetType(target_type) if target_type is not None else None,
                target_id=target_id,
                ip_address=ip_address,
                metadata_json=json.dumps(metadata, default=str) if metadata is not None else None,
            )
        except (ValueError, TypeError):
            logger.exception('audit: rejected entry', extra={'action': str(action)})
            return

        if self._executor is None:
            self._write(entry)
            return
        try:
            future = self._executor.submit(self._write, entry)
        except RuntimeError:
            # executor already shut down
            logger.exception('audit: enqueue failed', extra={'action': entry['action'].value})
            return
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _write(self, entry):
        sess = self.session_factory()
        try:
            sess.add(AuditLogEntry(**entry))
            sess.commit()
        except Exception:
            sess.rollback()
            logger.exception('audit: write failed', extra={'action': entry['action'].value,
                                                           'target_id': entry['target_id']})
        finally:
            sess.close()

    def flush(self, timeout=None):
        """Block until queued entries are written."""
        if self._pending:
            wait(list(self._pending), timeout=timeout)

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
