import json
import unittest
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

from services.google_api import GMAIL_PROFILE_URL, GOOGLE_AUTH_URL, GOOGLE_TOKEN_URL, GoogleClient
from services.integration_store import IntegrationRecord, IntegrationStore
from services.oauth_flow import IntegrationConnector, OAuthCallbackHandler, OAuthStartHandler, TokenRefreshHandler
from services.token_refresh import TokenRefresher
from shared.db import WorkspaceSettings
from tests.helpers import (
    ENCRYPTION_KEY,
    JWT_SECRET,
    DummyRequest,
    FakeResponse,
    FakeSession,
    make_session_factory,
    make_settings,
    make_verifier,
)
from utils.oauth_state import OAuthState, now_ms, sign_state, verify_state


class OAuthFlowTestCase(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.settings = make_settings()
        self.store = IntegrationStore(self.Session, ENCRYPTION_KEY)
        self.http = FakeSession()
        self.google = GoogleClient(session=self.http)
        self.verifier = make_verifier("u1")

    def tearDown(self):
        self.engine.dispose()

    def _add_workspace(self):
        db = self.Session()
        db.add(WorkspaceSettings(id="w1", company_name="Acme"))
        db.commit()
        db.close()


class OAuthStartTests(OAuthFlowTestCase):
    def setUp(self):
        super().setUp()
        self.handler = OAuthStartHandler(self.settings, self.verifier, self.store)

    def test_returns_google_consent_url(self):
        self._add_workspace()
        resp = self.handler.handle(DummyRequest("POST", body={"kind": "calendar"}))

        self.assertEqual(resp.status_code, 200)
        auth_url = json.loads(resp.get_body())["authUrl"]
        self.assertTrue(auth_url.startswith(GOOGLE_AUTH_URL + "?"))
        query = {key: values[0] for key, values in parse_qs(urlparse(auth_url).query).items()}
        self.assertEqual(query["client_id"], "client-id")
        self.assertEqual(query["redirect_uri"], self.settings.google_redirect_uri)
        self.assertEqual(query["access_type"], "offline")
        self.assertEqual(query["prompt"], "select_account")
        self.assertIn("https://www.googleapis.com/auth/calendar", query["scope"].split())

        state = verify_state(query["state"], JWT_SECRET)
        self.assertEqual(state.user_id, "u1")
        self.assertEqual(state.workspace_id, "w1")
        self.assertEqual(state.kind, "calendar")
        self.assertEqual(state.redirect_origin, "https://app.example.com")

    def test_workspace_not_configured(self):
        resp = self.handler.handle(DummyRequest("POST", body={"kind": "gmail"}))
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(json.loads(resp.get_body()), {"error": "Workspace not configured"})

    def test_invalid_kind(self):
        resp = self.handler.handle(DummyRequest("POST", body={"kind": "drive"}))
        self.assertEqual(resp.status_code, 400)


class OAuthCallbackTests(OAuthFlowTestCase):
    def setUp(self):
        super().setUp()
        connector = IntegrationConnector(self.settings, self.store, self.google)
        self.handler = OAuthCallbackHandler(self.settings, connector)

    def _state(self):
        return sign_state(OAuthState("u1", "w1", "gmail", "https://app.example.com", now_ms()), JWT_SECRET)

    def test_successful_callback_redirects_to_app(self):
        self.http.add("POST", GOOGLE_TOKEN_URL, FakeResponse(200, {"access_token": "AT1", "refresh_token": "RT1"}))
        self.http.add("GET", GMAIL_PROFILE_URL, FakeResponse(200, {"emailAddress": "a@b.com"}))

        resp = self.handler.handle(DummyRequest("GET", params={"code": "abc", "state": self._state()}, headers={}))

        self.assertEqual(resp.status_code, 302)
        self.assertEqual(
            resp.headers.get("Location"),
            "https://app.example.com/oauth/complete?connected=true&provider=google&kind=gmail",
        )
        self.assertEqual(self.http.calls[0][2]["data"]["redirect_uri"], self.settings.google_redirect_uri)
        self.assertEqual(self.store.get_with_decryption("u1", "gmail").value.email, "a@b.com")

    def test_exchange_failure_redirects_with_error(self):
        self.http.add("POST", GOOGLE_TOKEN_URL, FakeResponse(400, {"error": "invalid_grant"}))
        resp = self.handler.handle(DummyRequest("GET", params={"code": "abc", "state": self._state()}, headers={}))
        self.assertEqual(resp.status_code, 302)
        location = urlparse(resp.headers.get("Location"))
        self.assertEqual(location.path, "/oauth/complete")
        self.assertEqual(parse_qs(location.query)["error"], ["Failed to exchange code for tokens"])

    def test_google_error_parameter(self):
        resp = self.handler.handle(DummyRequest("GET", params={"error": "access_denied"}, headers={}))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(json.loads(resp.get_body()), {"error": "OAuth error: access_denied"})
        self.assertEqual(self.http.calls, [])

    def test_invalid_state(self):
        resp = self.handler.handle(DummyRequest("GET", params={"code": "abc", "state": "bogus"}, headers={}))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.http.calls, [])

    def test_missing_code(self):
        resp = self.handler.handle(DummyRequest("GET", params={"state": self._state()}, headers={}))
        self.assertEqual(resp.status_code, 400)

    def test_post_is_not_allowed(self):
        self.assertEqual(self.handler.handle(DummyRequest("POST", body={})).status_code, 405)


class TokenRefreshEndpointTests(OAuthFlowTestCase):
    def setUp(self):
        super().setUp()
        self.handler = TokenRefreshHandler(
            self.settings, self.verifier, self.store, TokenRefresher(self.store, self.google)
        )

    def _connect(self, expires_at):
        self.store.upsert(
            IntegrationRecord(
                user_id="u1",
                workspace_id="w1",
                kind="gmail",
                access_token="AT1",
                refresh_token="RT1",
                expires_at=expires_at,
            )
        )

    def test_still_valid_token_is_not_refreshed(self):
        self._connect(datetime.utcnow() + timedelta(hours=1))
        resp = self.handler.handle(DummyRequest("POST", body={"userId": "u1", "kind": "gmail"}))
        self.assertEqual(resp.status_code, 200)
        body = json.loads(resp.get_body())
        self.assertEqual(body["message"], "Token still valid")
        self.assertTrue(body["expiresAt"].endswith("Z"))
        self.assertEqual(self.http.calls, [])

    def test_forced_refresh(self):
        self._connect(datetime.utcnow() + timedelta(hours=1))
        self.http.add(
            "POST",
            GOOGLE_TOKEN_URL,
            FakeResponse(200, {"access_token": "AT2", "expires_in": 1800, "scope": "a b"}),
        )
        resp = self.handler.handle(DummyRequest("POST", body={"userId": "u1", "kind": "gmail", "force": True}))

        self.assertEqual(resp.status_code, 200)
        body = json.loads(resp.get_body())
        self.assertEqual(body["message"], "Token refreshed successfully")
        self.assertNotIn("accessToken", body)
        stored = self.store.get_with_decryption("u1", "gmail").value
        self.assertEqual(stored.access_token, "AT2")
        self.assertEqual(stored.scopes, ["a", "b"])

    def test_expired_token_is_refreshed(self):
        self._connect(datetime.utcnow() - timedelta(seconds=1))
        self.http.add("POST", GOOGLE_TOKEN_URL, FakeResponse(200, {"access_token": "AT2", "expires_in": 3600}))
        resp = self.handler.handle(DummyRequest("POST", body={"userId": "u1", "kind": "gmail"}))
        self.assertEqual(json.loads(resp.get_body())["message"], "Token refreshed successfully")

    def test_other_users_integration_is_rejected(self):
        resp = self.handler.handle(DummyRequest("POST", body={"userId": "u2", "kind": "gmail"}))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(json.loads(resp.get_body()), {"error": "User mismatch"})

    def test_missing_integration(self):
        resp = self.handler.handle(DummyRequest("POST", body={"userId": "u1", "kind": "calendar"}))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(
            json.loads(resp.get_body()),
            {"error": "No integration found or missing refresh token"},
        )


if __name__ == "__main__":
    unittest.main()
