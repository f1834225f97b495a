import logging

from filegate.audit import AuditLog
from filegate.models import AuditAction, AuditLogEntry, TargetType
from tests.conftest import audit_entries


class FailingSession:
    def add(self, obj):
        raise RuntimeError('database is read-only')

    def rollback(self):
        pass

    def close(self):
        pass


def test_append_persists_entry(app):
    app.audit.append('actor-1', AuditAction.UPLOAD, TargetType.FILE, 'file-1', '10.0.0.1',
                     {'originalName': 'bundle.zip', 'sizeBytes': 10})
    [entry] = audit_entries(app)
    assert entry.action == AuditAction.UPLOAD
    assert entry.actor_user_id == 'actor-1'
    assert entry.target_type == TargetType.FILE
    assert entry.ip_address == '10.0.0.1'
    assert entry.metadata_dict == {'originalName': 'bundle.zip', 'sizeBytes': 10}


def test_actor_may_be_null(app):
    app.audit.append(None, 'SEED_ADMIN', metadata={'status': 'failed'})
    [entry] = audit_entries(app)
    assert entry.actor_user_id is None
    assert entry.target_type is None


def test_write_failure_is_swallowed_and_logged(caplog):
    audit = AuditLog(FailingSession, asynchronous=False)
    with caplog.at_level(logging.ERROR, logger='filegate.audit'):
        audit.append('actor-1', AuditAction.LOGIN)
    assert 'audit: write failed' in caplog.text


def test_unknown_action_is_rejected_without_raising(app, caplog):
    with caplog.at_level(logging.ERROR, logger='filegate.audit'):
        app.audit.append('actor-1', 'FORMAT_DISK')
    assert audit_entries(app) == []
    assert 'audit: rejected entry' in caplog.text


def test_async_sink_writes_after_flush(app):
    audit = AuditLog(app.db_session.session_factory, asynchronous=True)
    try:
        for _ in range(3):
            audit.append('actor-1', AuditAction.DOWNLOAD, TargetType.FILE, 'file-1')
        audit.flush(timeout=5)
    finally:
        audit.close()
    assert len(audit_entries(app, AuditAction.DOWNLOAD)) == 3


def test_entries_are_not_exposed_for_update():
    # the sink only ever inserts
    assert not any(name.startswith(('update', 'delete')) for name in dir(AuditLog))
    assert AuditLogEntry.__tablename__ == 'audit_logs'
