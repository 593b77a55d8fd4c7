import logging
from typing import NamedTuple, Optional

import requests

from shared.errors import AuthenticationError

logger = logging.getLogger(__name__)


class SessionUser(NamedTuple):
    id: str
    email: Optional[str]


def extract_bearer_token(authorization: Optional[str]) -> str:
    value = (authorization or "").strip()
    if not value.startswith("Bearer "):
        raise AuthenticationError("Missing or invalid authorization header")
    token = value[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError("Missing or invalid authorization header")
    return token


class SupabaseSessionVerifier:
    """Resolves a CRM session token to its user through the Supabase Auth API."""

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        session: Optional[requests.Session] = None,
        timeout: int = 10,
    ) -> None:
        self.user_url = f"{supabase_url.rstrip('/')}/auth/v1/user"
        self.service_role_key = service_role_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def resolve(self, access_token: str) -> SessionUser:
        try:
            resp = self.session.get(
                self.user_url,
                headers={"apikey": self.service_role_key, "Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Session lookup failed: %s", exc)
            raise AuthenticationError("Invalid user token") from exc
        if resp.status_code != 200:
            logger.warning("Session token rejected by auth server: %s", resp.status_code)
            raise AuthenticationError("Invalid user token")
        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthenticationError("Invalid user token") from exc
        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise AuthenticationError("Invalid user token")
        return SessionUser(id=str(user_id), email=data.get("email"))
