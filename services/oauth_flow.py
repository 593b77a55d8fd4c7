import logging
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import urlencode

import azure.functions as func

from schemas.integrations_schema import ExchangeRequest, RefreshRequest, StartRequest
from services.google_api import GoogleClient, build_google_auth_url
from services.handlers import IntegrationHandler, error_response, json_response, parse_body
from services.integration_store import IntegrationRecord, IntegrationStore
from services.session_auth import SupabaseSessionVerifier
from services.token_refresh import TokenRefresher, expires_at_from
from shared.config import Settings
from shared.errors import IntegrationError, ValidationError
from utils.oauth_state import OAuthState, now_ms, sign_state, verify_state

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


class IntegrationConnector:
    """Redeems an authorization code and stores the resulting integration."""

    def __init__(self, settings: Settings, store: IntegrationStore, google: GoogleClient) -> None:
        self.settings = settings
        self.store = store
        self.google = google

    def connect(self, state: OAuthState, code: str, redirect_uri: Optional[str] = None) -> IntegrationRecord:
        credentials = self.store.resolve_credentials(
            state.workspace_id, state.kind, self.settings.centralized_credentials
        )
        tokens = self.google.exchange_code(credentials, code, redirect_uri or credentials.redirect_uri)
        access_token = str(tokens["access_token"])
        email = self.google.fetch_account_email(access_token, state.kind)

        now = _utcnow()
        result = self.store.upsert(
            IntegrationRecord(
                user_id=state.user_id,
                workspace_id=state.workspace_id,
                kind=state.kind,
                email=email,
                access_token=access_token,
                refresh_token=tokens.get("refresh_token"),
                expires_at=expires_at_from(tokens.get("expires_in"), now),
                scopes=str(tokens.get("scope") or "").split(),
                last_synced_at=now,
            )
        )
        if result.degraded:
            logger.warning("Integration %s/%s stored degraded: %s", state.user_id, state.kind, result.warnings)
        logger.info("Connected Google %s integration for user %s", state.kind, state.user_id)
        return result.value


class OAuthStartHandler(IntegrationHandler):
    name = "google-oauth-start"

    def __init__(self, settings: Settings, verifier: SupabaseSessionVerifier, store: IntegrationStore) -> None:
        super().__init__(settings, verifier)
        self.store = store

    def process(self, req: func.HttpRequest, cors: Dict[str, str]) -> func.HttpResponse:
        user = self.authenticate(req)
        body = parse_body(StartRequest, self.read_json(req))

        workspace_id = self.store.get_workspace_id()
        if not workspace_id:
            return error_response(500, "Workspace not configured", cors)

        credentials = self.store.resolve_credentials(workspace_id, body.kind, self.settings.centralized_credentials)
        state = sign_state(
            OAuthState(
                user_id=user.id,
                workspace_id=workspace_id,
                kind=body.kind,
                redirect_origin=self.settings.app_url,
                issued_at=now_ms(),
            ),
            self.settings.jwt_secret,
        )
        return json_response({"authUrl": build_google_auth_url(credentials, body.kind, state)}, 200, cors)


class OAuthExchangeHandler(IntegrationHandler):
    """POST {code, state} from the SPA after Google redirected back to it."""

    name = "google-oauth-exchange"

    def __init__(
        self,
        settings: Settings,
        verifier: SupabaseSessionVerifier,
        connector: IntegrationConnector,
    ) -> None:
        super().__init__(settings, verifier)
        self.connector = connector

    def process(self, req: func.HttpRequest, cors: Dict[str, str]) -> func.HttpResponse:
        user = self.authenticate(req)
        body = parse_body(ExchangeRequest, self.read_json(req))

        state = verify_state(body.state, self.settings.jwt_secret)
        if state is None:
            raise ValidationError("Invalid or expired state")
        if state.user_id != user.id:
            raise ValidationError("User mismatch")

        record = self.connector.connect(state, body.code, redirect_uri=self.settings.frontend_redirect_uri)
        return json_response({"success": True, "email": record.email, "kind": record.kind}, 200, cors)


class OAuthCallbackHandler(IntegrationHandler):
    """GET target of Google's redirect when the server-side redirect URI is used."""

    name = "google-oauth-callback"
    methods = ("GET",)

    def __init__(self, settings: Settings, connector: IntegrationConnector) -> None:
        super().__init__(settings)
        self.connector = connector

    def _complete_url(self, **params: str) -> str:
        return f"{self.settings.app_url}/oauth/complete?{urlencode(params)}"

    def process(self, req: func.HttpRequest, cors: Dict[str, str]) -> func.HttpResponse:
        params = req.params or {}
        google_error = params.get("error")
        if google_error:
            logger.error("OAuth error from Google: %s", google_error)
            return error_response(400, f"OAuth error: {google_error}", cors)

        code = params.get("code")
        raw_state = params.get("state")
        if not code or not raw_state:
            return error_response(400, "Missing code or state parameter", cors)

        state = verify_state(raw_state, self.settings.jwt_secret)
        if state is None:
            return error_response(400, "Invalid or expired state", cors)

        try:
            self.connector.connect(state, code)
        except Exception as exc:  # pylint: disable=broad-except
            message = exc.message if isinstance(exc, IntegrationError) else "Internal server error"
            logger.exception("OAuth callback failed for user %s", state.user_id)
            target = self._complete_url(error=message, provider="google", kind=state.kind)
            return func.HttpResponse("", status_code=302, headers={**cors, "Location": target})

        target = self._complete_url(connected="true", provider="google", kind=state.kind)
        return func.HttpResponse("", status_code=302, headers={**cors, "Location": target})


class TokenRefreshHandler(IntegrationHandler):
    """Explicit refresh of the caller's own integration; optionally forced."""

    name = "google-refresh"

    def __init__(
        self,
        settings: Settings,
        verifier: SupabaseSessionVerifier,
        store: IntegrationStore,
        refresher: TokenRefresher,
    ) -> None:
        super().__init__(settings, verifier)
        self.store = store
        self.refresher = refresher

    def process(self, req: func.HttpRequest, cors: Dict[str, str]) -> func.HttpResponse:
        user = self.authenticate(req)
        body = parse_body(RefreshRequest, self.read_json(req))
        if body.user_id != user.id:
            raise ValidationError("User mismatch")

        loaded = self.store.get_with_decryption(body.user_id, body.kind)
        record = loaded.value
        if record is None or not record.refresh_token:
            raise ValidationError("No integration found or missing refresh token")

        if not body.force and record.expires_at is not None and not record.is_expired():
            return json_response(
                {"ok": True, "expiresAt": iso_utc(record.expires_at), "message": "Token still valid"},
                200,
                cors,
            )

        credentials = self.store.resolve_credentials(
            record.workspace_id, record.kind, self.settings.centralized_credentials
        )
        refreshed = self.refresher.refresh(record, credentials)
        if refreshed.degraded:
            logger.warning("Token refresh for %s/%s degraded: %s", user.id, body.kind, refreshed.warnings)
        return json_response(
            {
                "ok": True,
                "expiresAt": iso_utc(refreshed.value.expires_at),
                "message": "Token refreshed successfully",
            },
            200,
            cors,
        )
