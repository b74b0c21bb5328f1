import uuid
from datetime import datetime, timedelta, timezone

import jwt
from fastapi.testclient import TestClient

from blog import database, main
from blog.auth import create_refresh_token
from blog.config import settings
from blog.main import app
from blog.utils.rate_limit import InMemoryRateLimiter

client = TestClient(app)


def _payload(**overrides):
    suffix = uuid.uuid4().hex[:8]
    body = {
        'email': f'auth{suffix}@blog.test',
        'password': 'password1',
        'name': 'Auth Tester',
        'nickname': f'auth{suffix}',
    }
    body.update(overrides)
    return body


def test_signup_sets_cookies_and_returns_user():
    c = TestClient(app)
    body = _payload()
    r = c.post('/api/auth/signup', json=body)
    assert r.status_code == 201
    data = r.json()
    assert data['user']['email'] == body['email']
    assert data['user']['role'] == 'user'
    assert data['access_token']
    assert 'access_token' in r.cookies
    assert 'refresh_token' in r.cookies
    # the cookie alone authenticates follow-up requests
    me = c.get('/api/me')
    assert me.status_code == 200
    assert me.json()['nickname'] == body['nickname']


def test_signup_duplicates_conflict():
    body = _payload()
    assert client.post('/api/auth/signup', json=body).status_code == 201
    r = client.post('/api/auth/signup', json=_payload(email=body['email']))
    assert r.status_code == 409
    assert 'email' in r.json()['errors']
    r = client.post('/api/auth/signup', json=_payload(nickname=body['nickname']))
    assert r.status_code == 409
    assert 'nickname' in r.json()['errors']


def test_signup_validation_errors_are_400_with_field_map():
    r = client.post('/api/auth/signup', json=_payload(password='short', email='not-an-email'))
    assert r.status_code == 400
    body = r.json()
    assert body['detail'] == 'invalid input'
    assert 'password' in body['errors']
    assert 'email' in body['errors']
    r = client.post('/api/auth/signup', json=_payload(nickname='x'))
    assert r.status_code == 400
    assert 'nickname' in r.json()['errors']


def test_signup_can_be_disabled(monkeypatch):
    monkeypatch.setattr(settings, 'ALLOW_SIGNUP', False)
    r = client.post('/api/auth/signup', json=_payload())
    assert r.status_code == 403


def test_login_success_and_failure():
    body = _payload()
    client.post('/api/auth/signup', json=body)
    c = TestClient(app)
    r = c.post('/api/auth/login', json={'email': body['email'], 'password': body['password']})
    assert r.status_code == 200
    assert r.json()['user']['nickname'] == body['nickname']
    assert 'refresh_token' in r.cookies
    bad = c.post('/api/auth/login', json={'email': body['email'], 'password': 'wrongpass1'})
    assert bad.status_code == 401
    assert bad.json()['detail'] == 'invalid email or password'
    unknown = c.post('/api/auth/login', json={'email': 'nobody@blog.test', 'password': 'password1'})
    assert unknown.status_code == 401
    assert unknown.json()['detail'] == 'invalid email or password'


def test_login_is_rate_limited(monkeypatch):
    monkeypatch.setattr(main, '_login_rate_limiter', InMemoryRateLimiter())
    monkeypatch.setattr(settings, 'LOGIN_RATE_LIMIT_PER_MIN', 2)
    creds = {'email': 'nobody@blog.test', 'password': 'password1'}
    assert client.post('/api/auth/login', json=creds).status_code == 401
    assert client.post('/api/auth/login', json=creds).status_code == 401
    r = client.post('/api/auth/login', json=creds)
    assert r.status_code == 429
    assert int(r.headers['Retry-After']) >= 1


def test_bearer_header_and_token_type():
    body = _payload()
    r = client.post('/api/auth/signup', json=body)
    token = r.json()['access_token']
    user_id = r.json()['user']['id']
    bare = TestClient(app)
    me = bare.get('/api/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    assert me.json()['id'] == user_id
    # a refresh token is not accepted as an access token
    refresh = create_refresh_token(user_id, body['email'])
    r = bare.get('/api/me', headers={'Authorization': f'Bearer {refresh}'})
    assert r.status_code == 401
    r = bare.get('/api/me', headers={'Authorization': 'Bearer garbage'})
    assert r.status_code == 401
    assert r.json()['detail'] == 'invalid token'


def test_expired_access_token_is_rejected():
    now = datetime.now(timezone.utc)
    expired = jwt.encode(
        {
            'sub': '1',
            'email': 'x@blog.test',
            'type': 'access',
            'iat': int((now - timedelta(hours=2)).timestamp()),
            'exp': int((now - timedelta(hours=1)).timestamp()),
        },
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    r = TestClient(app).get('/api/me', headers={'Authorization': f'Bearer {expired}'})
    assert r.status_code == 401
    assert r.json()['detail'] == 'token expired'


def test_missing_credentials_is_401():
    assert TestClient(app).get('/api/me').status_code == 401


def test_silent_renewal_from_refresh_cookie():
    c = TestClient(app)
    c.post('/api/auth/signup', json=_payload())
    c.cookies.delete('access_token')
    r = c.get('/api/me')
    assert r.status_code == 200
    assert 'access_token' in r.cookies


def test_silent_renewal_survives_delete_endpoints(admin_client):
    c = TestClient(app)
    c.post('/api/auth/signup', json=_payload())
    post = c.post('/api/my/posts', json={
        'title': f'Renewed {uuid.uuid4().hex[:8]}',
        'excerpt': 'x',
        'post_type': 'core',
        'content': 'body',
    }).json()
    c.cookies.delete('access_token')
    r = c.delete(f"/api/my/posts/{post['slug']}")
    assert r.status_code == 204
    assert r.content == b''
    assert 'access_token' in r.cookies

    stack = admin_client.post('/api/admin/stacks', json={'name': f'renew{uuid.uuid4().hex[:8]}'}).json()
    admin_client.cookies.delete('access_token')
    r = admin_client.delete(f"/api/admin/stacks/{stack['id']}")
    assert r.status_code == 204
    assert 'access_token' in r.cookies


def test_refresh_rotates_tokens():
    c = TestClient(app)
    c.post('/api/auth/signup', json=_payload())
    r = c.post('/api/auth/refresh')
    assert r.status_code == 200
    assert r.json()['access_token']
    assert 'access_token' in r.cookies
    assert 'refresh_token' in r.cookies


def test_refresh_without_or_with_bad_cookie():
    c = TestClient(app)
    assert c.post('/api/auth/refresh').status_code == 401
    c.cookies.set('refresh_token', 'garbage')
    r = c.post('/api/auth/refresh')
    assert r.status_code == 401
    cleared = [h for h in r.headers.get_list('set-cookie') if h.startswith('refresh_token=')]
    assert cleared and 'Max-Age=0' in cleared[0]


def test_logout_clears_cookies():
    c = TestClient(app)
    c.post('/api/auth/signup', json=_payload())
    r = c.post('/api/auth/logout')
    assert r.status_code == 200
    assert 'access_token' not in c.cookies
    assert 'refresh_token' not in c.cookies
    assert c.get('/api/me').status_code == 401


def test_admin_signup_requires_admin(signup, admin_client):
    regular, _ = signup('plain')
    body = _payload()
    assert regular.post('/api/admin/auth/signup', json=body).status_code == 403
    r = admin_client.post('/api/admin/auth/signup', json={**body, 'role': 'admin'})
    assert r.status_code == 201
    assert r.json()['role'] == 'admin'
    assert 'access_token' not in r.cookies


def test_every_response_has_request_id():
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}
    assert r.headers['X-Request-ID']
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.headers['X-Request-ID'] == 'abc123'


def test_seeded_admin_email_is_lowercased(monkeypatch):
    suffix = uuid.uuid4().hex[:8]
    monkeypatch.setattr(settings, 'ADMIN_EMAIL', f'  Boss{suffix}@Blog.TEST ')
    monkeypatch.setattr(settings, 'ADMIN_PASSWORD', 'bosspass1')
    monkeypatch.setattr(settings, 'ADMIN_NICKNAME', f'boss{suffix}')
    database._seed_admin()
    # a second run finds the normalised row instead of inserting again
    database._seed_admin()

    c = TestClient(app)
    r = c.post('/api/auth/login', json={'email': f'Boss{suffix}@Blog.TEST', 'password': 'bosspass1'})
    assert r.status_code == 200, r.text
    assert r.json()['user']['email'] == f'boss{suffix}@blog.test'
    assert r.json()['user']['role'] == 'admin'
