import json
import os

os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['BOOTSTRAP_JOBS_ON_IMPORT'] = '0'
os.environ['ENABLE_CRON_JOBS'] = '0'
os.environ['CRON_SECRET'] = 'cron-secret'
os.environ['API_SHARED_KEY'] = 'shared-key'
os.environ['DEFAULT_TIMEZONE'] = 'UTC'

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from backend.push_config import PushSettings


BUNDLE_ID = 'com.example.callme'


def _pkcs8(key):
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode('utf-8')


class StubResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload or {})

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class StubSession:
    """Stands in for ``requests``: answers POSTs by URL and records them."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        for prefix, response in self.responses.items():
            if url.startswith(prefix):
                return response
        return StubResponse(404, {"error": {"status": "NOT_FOUND"}})


class ApnsRecorder:
    """httpx.MockTransport handler recording every APNs request."""

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.status_code == 200:
            return httpx.Response(200, headers={'apns-id': 'apns-123'})
        return httpx.Response(self.status_code, json=self.body or {})

    def client(self):
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def ec_key_pem(ec_key):
    return _pkcs8(ec_key)


@pytest.fixture
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def rsa_key_pem(rsa_key):
    return _pkcs8(rsa_key)


@pytest.fixture
def service_account(rsa_key_pem):
    return {
        'project_id': 'callme-test',
        'client_email': 'push@callme-test.iam.gserviceaccount.com',
        'private_key': rsa_key_pem,
    }


@pytest.fixture
def push_settings(ec_key_pem, service_account):
    return PushSettings(
        apns_team_id='TEAM123456',
        apns_key_id='KEY1234567',
        apns_private_key=ec_key_pem,
        apns_bundle_id=BUNDLE_ID,
        fcm_service_account=json.dumps(service_account),
    )


@pytest.fixture
def apns_ok():
    return ApnsRecorder()


@pytest.fixture
def app_ctx():
    import app as a

    a.scheduler = None
    a.call_alert_backend = None
    with a.app.app_context():
        a.db.drop_all()
        a.db.create_all()
        yield a
        a.db.session.remove()


@pytest.fixture
def client(app_ctx):
    return app_ctx.app.test_client()


def auth_headers(user_id):
    return {'X-API-Key': 'shared-key', 'X-User-Id': user_id}
