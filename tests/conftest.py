import os
import tempfile
import time

# The app reads its configuration at import time.
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ['AUDIT_LOG_DIR'] = tempfile.mkdtemp(prefix='votechain-audit-')
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-that-is-long-enough'
os.environ['LEDGER_DIFFICULTY'] = '2'

import pyotp
import pytest

from votechain import app as flask_app
from votechain import db, routes
from votechain.database import store
from votechain.security.token_manager import ALL_FACTORS

PASSWORD = "Secret123!"


def descriptor(value=0.1, length=128):
    return [value] * length


def current_code(secret):
    return pyotp.TOTP(secret).now()


def wrong_code(secret):
    """A 6-digit code outside the +/-2 step verification window."""
    totp = pyotp.TOTP(secret)
    now = int(time.time())
    valid = {totp.at(now + offset * totp.interval) for offset in range(-3, 4)}
    for digit in "0123456789":
        candidate = digit * 6
        if candidate not in valid:
            return candidate


@pytest.fixture
def app():
    flask_app.config['TESTING'] = True
    routes.intrusion_detection.failures.clear()
    routes.intrusion_detection.locks.clear()
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def election(app):
    return store.seed_default_election()


@pytest.fixture
def make_user(app):
    """Create a user directly in the store, optionally with TOTP and face enabled."""
    def _make_user(username="alice", password=PASSWORD, totp=False, face=False, full_name=None):
        user = store.create_user(username, routes.password_service.hash_password(password),
                                 full_name or username.title())
        if totp or face:
            store.set_totp_secret(user, pyotp.random_base32())
            store.enable_totp(user)
        if face:
            store.enroll_face(user, descriptor())
        return user
    return _make_user


@pytest.fixture
def all_factors():
    return frozenset(ALL_FACTORS)


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, username="alice", password=PASSWORD, full_name="Alice A"):
    return client.post('/api/auth/register',
                       json={"username": username, "password": password, "fullName": full_name})


def enroll_all_factors(client, username="alice"):
    """Register and finish TOTP and face setup over HTTP. Returns (token, totp secret)."""
    token = register(client, username).get_json()['token']
    secret = client.get('/api/auth/setup-totp', headers=auth_header(token)).get_json()['secret']
    resp = client.post('/api/auth/verify-totp', json={"code": current_code(secret)},
                       headers=auth_header(token))
    token = resp.get_json()['token']
    resp = client.post('/api/auth/enroll-face', json={"faceDescriptor": descriptor()},
                       headers=auth_header(token))
    return resp.get_json()['token'], secret
