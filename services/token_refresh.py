import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from services.google_api import GoogleClient
from services.integration_store import IntegrationRecord, IntegrationStore, SoftResult
from shared.config import WorkspaceCredentials
from shared.errors import UpstreamProviderError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expires_at_from(expires_in, now: Optional[datetime] = None) -> datetime:
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        seconds = DEFAULT_EXPIRES_IN
    return (now or _utcnow()) + timedelta(seconds=seconds)


class TokenRefresher:
    """
    Lazy refresh of a stored integration's access token.

    valid -> (expires_at reached) -> refresh -> valid, or the request fails and
    the stored row is left untouched. Rotation is persisted before the caller
    uses the new token.
    """

    def __init__(self, store: IntegrationStore, google: GoogleClient) -> None:
        self.store = store
        self.google = google

    def ensure_fresh(
        self,
        record: IntegrationRecord,
        credentials: WorkspaceCredentials,
        now: Optional[datetime] = None,
    ) -> SoftResult[IntegrationRecord]:
        if not record.is_expired(now):
            return SoftResult(record, [])
        return self.refresh(record, credentials, now=now)

    def refresh(
        self,
        record: IntegrationRecord,
        credentials: WorkspaceCredentials,
        now: Optional[datetime] = None,
    ) -> SoftResult[IntegrationRecord]:
        if not record.refresh_token:
            logger.warning("Integration %s has no usable refresh token", record.id)
            raise UpstreamProviderError("Failed to refresh token")

        data = self.google.refresh_access_token(credentials, record.refresh_token)
        access_token = str(data["access_token"])
        expires_at = expires_at_from(data.get("expires_in"), now)
        scope = data.get("scope")
        scopes = str(scope).split() if scope else None

        rotated = self.store.rotate_access_token(record, access_token, expires_at, scopes)
        if rotated is not None:
            return rotated

        # Another request rotated first; its token is at least as new as ours.
        current = self.store.get_with_decryption(record.user_id, record.kind)
        if current.value and current.value.access_token and not current.value.is_expired(now):
            return current
        logger.warning("Concurrent rotation left no usable token for %s; using unsaved token", record.id)
        return SoftResult(
            replace(record, access_token=access_token, expires_at=expires_at),
            ["refreshed token was not persisted"],
        )
