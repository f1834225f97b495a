import io
import zipfile

import pytest

from filegate import create_app, Base
from filegate.errors import UpstreamFailure
from filegate.models import User, Role, AuditLogEntry
from filegate.tokens import Identity

ADMIN_PASSWORD = 'AdminPassword123!'
USER_PASSWORD = 'UserPassword123'


class MemoryObjectStore:
    """Stands in for the S3 bucket; same interface as filegate.storage.ObjectStore."""

    def __init__(self):
        self.objects = {}
        self.fail = False
        self.after_put = None

    def put_object(self, fileobj, key, sha256):
        if self.fail:
            raise UpstreamFailure('simulated outage')
        self.objects[key] = {'body': fileobj.read(), 'sha256': sha256}
        if self.after_put is not None:
            self.after_put(key)

    def presigned_url(self, key):
        if self.fail:
            raise UpstreamFailure('simulated outage')
        return f'https://objects.test/{key}?X-Amz-Signature=test'

    def open_stream(self, key):
        if self.fail or key not in self.objects:
            raise UpstreamFailure('simulated outage')
        body = self.objects[key]['body']
        return iter([body[i:i + 1024] for i in range(0, len(body), 1024)]), len(body)


def make_zip(name='readme.txt', payload=b'hello archive'):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w') as zf:
        zf.writestr(name, payload)
    return buf.getvalue()


@pytest.fixture
def store():
    return MemoryObjectStore()


@pytest.fixture
def config(tmp_path, store):
    return {
        'TESTING': True,
        'ENV': 'testing',
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'filegate-test.db'}",
        'SECRET_KEY': 'test-secret',
        'AUDIT_ASYNC': False,
        'RATE_LIMIT_STORAGE': 'memory',
        'PASSWORD_HASH_TIME_COST': 1,
        'PASSWORD_HASH_MEMORY_COST': 1024,
        'SESSION_COOKIE_SECURE': False,
        'OBJECT_STORE': store,
    }


@pytest.fixture
def app(config):
    app = create_app(config)
    Base.metadata.create_all(bind=app.db_engine)
    yield app
    app.db_session.remove()
    app.db_engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sess(app):
    s = app.db_session()
    yield s
    app.db_session.remove()


def create_user(app, email, password=USER_PASSWORD, role=Role.USER):
    s = app.db_session()
    user = User(email=email, password_hash=app.credentials.hash(password), role=role)
    s.add(user)
    s.commit()
    user_id = user.id
    app.db_session.remove()
    return user_id


def bearer(app, user_id):
    s = app.db_session()
    token = app.tokens.issue(Identity.from_user(s.get(User, user_id)))
    app.db_session.remove()
    return {'Authorization': f'Bearer {token}'}


def audit_entries(app, action=None):
    s = app.db_session()
    q = s.query(AuditLogEntry)
    if action is not None:
        q = q.filter(AuditLogEntry.action == action)
    rows = q.order_by(AuditLogEntry.created_at).all()
    app.db_session.remove()
    return rows


@pytest.fixture
def admin_id(app):
    return create_user(app, 'admin@example.com', ADMIN_PASSWORD, Role.ADMIN)


@pytest.fixture
def user_id(app):
    return create_user(app, 'alice@example.com')


@pytest.fixture
def admin_headers(app, admin_id):
    return bearer(app, admin_id)


@pytest.fixture
def user_headers(app, user_id):
    return bearer(app, user_id)


def upload(client, headers, data=None, filename='bundle.zip', project='alpha', mimetype='application/zip'):
    payload = make_zip() if data is None else data
    form = {'file': (io.BytesIO(payload), filename, mimetype)}
    if project is not None:
        form['projectSlug'] = project
    return client.post('/api/files/upload', data=form, headers=headers,
                       content_type='multipart/form-data')


@pytest.fixture
def uploaded_file(client, admin_headers):
    resp = upload(client, admin_headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['file']
