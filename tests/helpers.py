import json
from unittest import mock

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from services.session_auth import SessionUser, SupabaseSessionVerifier
from shared.config import Settings
from shared.db import create_session_factory, init_db

ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
JWT_SECRET = "state-secret"


class DummyRequest:
    def __init__(self, method, body=None, params=None, headers=None):
        self.method = method
        self.params = params or {}
        self.headers = headers if headers is not None else {"authorization": "Bearer session-token"}
        self.route_params = {}
        self._body = body

    def get_json(self):
        if self._body is None:
            raise ValueError()
        return self._body


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """Stands in for requests.Session: answers from registered routes and records every call."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url, response):
        self.routes.setdefault((method, url), []).append(response)

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        queue = self.routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response):
            return response(method, url, kwargs)
        return response

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def urls(self, method=None):
        return [url for call_method, url, _ in self.calls if method is None or call_method == method]


def make_settings(**overrides):
    values = {
        "app_url": "https://app.example.com",
        "jwt_secret": JWT_SECRET,
        "supabase_url": "https://project.supabase.co",
        "supabase_service_role_key": "service-role",
        "google_client_id": "client-id",
        "google_client_secret": "client-secret",
        "google_redirect_uri": "https://api.example.com/api/google-oauth-callback",
        "encryption_key": ENCRYPTION_KEY,
        "database_url": "sqlite:///:memory:",
        "allowed_origins": ("https://app.example.com",),
    }
    values.update(overrides)
    return Settings(**values)


def make_session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine, create_session_factory(engine)


def make_verifier(user_id="u1", email="owner@example.com"):
    verifier = mock.Mock(spec=SupabaseSessionVerifier)
    verifier.resolve.return_value = SessionUser(id=user_id, email=email)
    return verifier
