import base64
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import requests
from bs4 import BeautifulSoup

from shared.config import WorkspaceCredentials
from shared.errors import UpstreamProviderError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GMAIL_PROFILE_URL = "https://gmail.googleapis.com/gmail/v1/users/me/profile"
GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
CALENDAR_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"

KIND_SCOPES = {
    "gmail": "https://www.googleapis.com/auth/gmail.send https://www.googleapis.com/auth/gmail.readonly",
    "calendar": "https://www.googleapis.com/auth/calendar https://www.googleapis.com/auth/userinfo.email",
}


def build_google_auth_url(credentials: WorkspaceCredentials, kind: str, state: str) -> str:
    params = {
        "client_id": credentials.client_id,
        "redirect_uri": credentials.redirect_uri,
        "scope": KIND_SCOPES[kind],
        "access_type": "offline",
        "include_granted_scopes": "true",
        "prompt": "select_account",
        "response_type": "code",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def html_to_text(html: str) -> str:
    return BeautifulSoup(html or "", "html.parser").get_text()


def build_raw_message(to_value: str, subject: str, html: Optional[str], text: Optional[str]) -> str:
    """RFC 2822 multipart/alternative message, base64url encoded without padding."""
    msg = MIMEMultipart("alternative")
    msg["To"] = to_value
    msg["Subject"] = subject
    plain_body = text if text else html_to_text(html or "")
    html_body = html if html else text
    msg.attach(MIMEText(plain_body or "", "plain", "utf-8"))
    msg.attach(MIMEText(html_body or "", "html", "utf-8"))
    return base64.urlsafe_b64encode(msg.as_bytes()).decode("utf-8").rstrip("=")


class GoogleClient:
    """
    One method per Google REST call used by the integration endpoints.
    Non-2xx answers raise UpstreamProviderError; the body is logged, never returned.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = 10) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def _send(self, method: str, url: str, failure_message: str, **kwargs) -> requests.Response:
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("%s: %s %s raised %s", failure_message, method, url, exc)
            raise UpstreamProviderError(failure_message) from exc
        if resp.status_code >= 300:
            logger.error("%s: %s %s -> %s %s", failure_message, method, url, resp.status_code, resp.text)
            raise UpstreamProviderError(failure_message, provider_status=resp.status_code, provider_body=resp.text)
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> Dict[str, Any]:
        if not resp.text:
            return {}
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def exchange_code(self, credentials: WorkspaceCredentials, code: str, redirect_uri: str) -> Dict[str, Any]:
        payload = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        resp = self._send("POST", GOOGLE_TOKEN_URL, "Failed to exchange code for tokens", data=payload)
        data = self._json(resp)
        if not data.get("access_token"):
            raise UpstreamProviderError("Failed to exchange code for tokens")
        return data

    def refresh_access_token(self, credentials: WorkspaceCredentials, refresh_token: str) -> Dict[str, Any]:
        payload = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        resp = self._send("POST", GOOGLE_TOKEN_URL, "Failed to refresh token", data=payload)
        data = self._json(resp)
        if not data.get("access_token"):
            raise UpstreamProviderError("Failed to refresh token")
        return data

    def fetch_account_email(self, access_token: str, kind: str) -> str:
        headers = {"Authorization": f"Bearer {access_token}"}
        if kind == "gmail":
            resp = self._send("GET", GMAIL_PROFILE_URL, "Failed to get Gmail profile", headers=headers)
            email = self._json(resp).get("emailAddress")
        else:
            resp = self._send("GET", GOOGLE_USERINFO_URL, "Failed to get user info", headers=headers)
            email = self._json(resp).get("email")
        if not email:
            raise UpstreamProviderError("Google account has no email address")
        return str(email)

    def create_event(self, access_token: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._send(
            "POST",
            CALENDAR_EVENTS_URL,
            "Failed to create calendar event",
            headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            json=body,
        )
        return self._json(resp)

    def update_event(self, access_token: str, event_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._send(
            "PUT",
            f"{CALENDAR_EVENTS_URL}/{quote(event_id, safe='')}",
            "Failed to update calendar event",
            headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            json=body,
        )
        return self._json(resp)

    def delete_event(self, access_token: str, event_id: str) -> None:
        self._send(
            "DELETE",
            f"{CALENDAR_EVENTS_URL}/{quote(event_id, safe='')}",
            "Failed to delete calendar event",
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def send_message(self, access_token: str, raw_message: str) -> Dict[str, Any]:
        resp = self._send(
            "POST",
            GMAIL_SEND_URL,
            "Failed to send email via Gmail",
            headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            json={"raw": raw_message},
        )
        return self._json(resp)
