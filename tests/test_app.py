import pytest

from filegate import create_app

ALLOWED = 'https://files.example.com'


@pytest.fixture
def cors_client(config):
    app = create_app(dict(config, CORS_ORIGIN=f'{ALLOWED}, https://admin.example.com'))
    yield app.test_client()
    app.db_engine.dispose()


def _preflight(client, path, origin):
    return client.options(path, headers={
        'Origin': origin,
        'Access-Control-Request-Method': 'GET',
        'Access-Control-Request-Headers': 'Authorization',
    })


def test_preflight_from_allowed_origin(cors_client):
    resp = _preflight(cors_client, '/api/files', ALLOWED)
    assert resp.status_code == 200
    assert resp.headers['Access-Control-Allow-Origin'] == ALLOWED
    assert resp.headers['Access-Control-Allow-Credentials'] == 'true'
    assert 'authorization' in resp.headers['Access-Control-Allow-Headers'].lower()
    assert 'GET' in resp.headers['Access-Control-Allow-Methods']

    second = _preflight(cors_client, '/api/users', 'https://admin.example.com')
    assert second.headers['Access-Control-Allow-Origin'] == 'https://admin.example.com'


def test_preflight_from_other_origin_gets_no_grant(cors_client):
    resp = _preflight(cors_client, '/api/files', 'https://evil.example.com')
    assert 'Access-Control-Allow-Origin' not in resp.headers


def test_cors_limited_to_api(cors_client):
    resp = cors_client.get('/health', headers={'Origin': ALLOWED})
    assert 'Access-Control-Allow-Origin' not in resp.headers

