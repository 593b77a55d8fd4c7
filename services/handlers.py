import json
import logging
from typing import Any, Dict, Optional, Tuple

import azure.functions as func

from services.google_api import GoogleClient
from services.integration_store import IntegrationStore
from services.session_auth import SessionUser, SupabaseSessionVerifier, extract_bearer_token
from services.token_refresh import TokenRefresher
from shared.config import Settings
from shared.errors import ConfigurationError, IntegrationError, UpstreamProviderError, ValidationError
from utils.cors import build_cors_headers

logger = logging.getLogger(__name__)


def json_response(payload: Dict[str, Any], status_code: int, headers: Dict[str, str]) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(payload),
        status_code=status_code,
        mimetype="application/json",
        headers=headers,
    )


def error_response(status_code: int, message: str, headers: Dict[str, str]) -> func.HttpResponse:
    return json_response({"error": message}, status_code, headers)


class IntegrationHandler:
    """
    Shared request pipeline for the Google integration endpoints:
    CORS preflight, method check, one top-level error mapping per request.
    Subclasses implement process().
    """

    name = "integration"
    methods: Tuple[str, ...] = ("POST",)

    def __init__(self, settings: Settings, verifier: Optional[SupabaseSessionVerifier] = None) -> None:
        self.settings = settings
        self.verifier = verifier

    def handle(self, req: func.HttpRequest) -> func.HttpResponse:
        cors = build_cors_headers(req, self.settings.allowed_origins)
        method = (req.method or "").upper()
        if method == "OPTIONS":
            return func.HttpResponse("", status_code=200, headers=cors)
        if method not in self.methods:
            return error_response(405, "Method not allowed", cors)

        try:
            return self.process(req, cors)
        except UpstreamProviderError as exc:
            logger.error(
                "[%s] Google call failed: %s (status=%s)", self.name, exc.message, exc.provider_status
            )
            return error_response(exc.status_code, exc.message, cors)
        except ConfigurationError as exc:
            logger.error("[%s] Configuration error: %s", self.name, exc.message)
            return error_response(500, "Internal server error", cors)
        except IntegrationError as exc:
            logger.warning("[%s] Request rejected (%s): %s", self.name, exc.status_code, exc.message)
            return error_response(exc.status_code, exc.message, cors)
        except Exception:  # pylint: disable=broad-except
            logger.exception("[%s] Unhandled error", self.name)
            return error_response(500, "Internal server error", cors)

    def process(self, req: func.HttpRequest, cors: Dict[str, str]) -> func.HttpResponse:
        raise NotImplementedError

    def authenticate(self, req: func.HttpRequest) -> SessionUser:
        if self.verifier is None:
            raise ConfigurationError("No session verifier configured")
        token = extract_bearer_token(req.headers.get("authorization") or req.headers.get("Authorization"))
        return self.verifier.resolve(token)

    @staticmethod
    def read_json(req: func.HttpRequest) -> Dict[str, Any]:
        try:
            body = req.get_json()
        except ValueError as exc:
            raise ValidationError("Invalid JSON body") from exc
        if body is None:
            return {}
        if not isinstance(body, dict):
            raise ValidationError("Invalid JSON body")
        return body


def parse_body(schema, payload: Dict[str, Any]):
    """Run a schema's from_json, turning its ValueError into a 400."""
    try:
        return schema.from_json(payload)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


class ProviderProxyHandler(IntegrationHandler):
    """Base for endpoints that act on the caller's stored Google integration of one kind."""

    kind = ""
    label = ""

    def __init__(
        self,
        settings: Settings,
        verifier: SupabaseSessionVerifier,
        store: IntegrationStore,
        refresher: TokenRefresher,
        google: GoogleClient,
    ) -> None:
        super().__init__(settings, verifier)
        self.store = store
        self.refresher = refresher
        self.google = google

    def load_access_token(self, user: SessionUser) -> str:
        loaded = self.store.get_with_decryption(user.id, self.kind)
        if loaded.degraded:
            logger.warning("[%s] Stored tokens degraded for %s: %s", self.name, user.id, loaded.warnings)
        record = loaded.value
        if record is None or not record.access_token:
            raise ValidationError(f"{self.label} integration not found or missing access token")
        if not record.is_expired():
            return record.access_token

        credentials = self.store.resolve_credentials(
            record.workspace_id, record.kind, self.settings.centralized_credentials
        )
        refreshed = self.refresher.ensure_fresh(record, credentials)
        if refreshed.degraded:
            logger.warning("[%s] Token refresh degraded for %s: %s", self.name, user.id, refreshed.warnings)
        return str(refreshed.value.access_token)
