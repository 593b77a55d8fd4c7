from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Generic, List, Optional, Tuple, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shared.config import GOOGLE_PROVIDER, WorkspaceCredentials
from shared.db import EmailLog, UserIntegration, WorkspaceIntegration, WorkspaceSettings
from shared.errors import CipherError, ConfigurationError
from utils.token_crypto import decrypt_token, is_sealed, seal_token

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class SoftResult(Generic[T]):
    """A successful outcome plus any non-fatal degradations that happened on the way."""

    value: T
    warnings: List[str]

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


@dataclass
class IntegrationRecord:
    user_id: str
    kind: str
    workspace_id: Optional[str] = None
    provider: str = GOOGLE_PROVIDER
    email: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = field(default_factory=list)
    last_synced_at: Optional[datetime] = None
    id: Optional[str] = None
    token_version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: UserIntegration) -> "IntegrationRecord":
        scopes = row.scopes if isinstance(row.scopes, list) else []
        return cls(
            id=row.id,
            user_id=row.user_id,
            workspace_id=row.workspace_id,
            provider=row.provider,
            kind=row.kind,
            email=row.email,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            expires_at=row.expires_at,
            scopes=[str(scope) for scope in scopes],
            last_synced_at=row.last_synced_at,
            token_version=row.token_version or 0,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow())


class IntegrationStore:
    """
    Persistence for user_integrations plus the few workspace lookups the OAuth flow needs.
    Tokens are sealed (utils.token_crypto) on write when an encryption key is configured.
    """

    def __init__(self, session_factory: sessionmaker, encryption_key: Optional[str] = None) -> None:
        self.session_factory = session_factory
        self.encryption_key = encryption_key

    # ------------------------------------------------------------------
    # Token sealing
    # ------------------------------------------------------------------

    def _seal(self, token: Optional[str], label: str) -> Tuple[Optional[str], Optional[str]]:
        if token is None or not self.encryption_key:
            return token, None
        try:
            return seal_token(token, self.encryption_key), None
        except CipherError as exc:
            warning = f"{label} stored without encryption: {exc}"
            logger.warning(warning)
            return token, warning

    def _open(self, stored: Optional[str], label: str) -> Tuple[Optional[str], Optional[str]]:
        if stored is None or not is_sealed(stored):
            # Legacy plaintext rows are used as-is.
            return stored, None
        if not self.encryption_key:
            warning = f"{label} is encrypted but no ENCRYPTION_KEY is configured"
            logger.warning(warning)
            return None, warning
        try:
            return decrypt_token(stored, self.encryption_key), None
        except (CipherError, UnicodeDecodeError) as exc:
            warning = f"{label} could not be decrypted: {exc}"
            logger.warning(warning)
            return None, warning

    # ------------------------------------------------------------------
    # user_integrations
    # ------------------------------------------------------------------

    @staticmethod
    def _query_row(db: Session, user_id: str, kind: str) -> Optional[UserIntegration]:
        return (
            db.query(UserIntegration)
            .filter_by(user_id=user_id, provider=GOOGLE_PROVIDER, kind=kind)
            .one_or_none()
        )

    def get(self, user_id: str, kind: str) -> Optional[IntegrationRecord]:
        """Stored row as-is (tokens possibly sealed). None only when no row exists."""
        db = self.session_factory()
        try:
            row = self._query_row(db, user_id, kind)
            return IntegrationRecord.from_row(row) if row else None
        finally:
            db.close()

    def get_with_decryption(self, user_id: str, kind: str) -> SoftResult[Optional[IntegrationRecord]]:
        record = self.get(user_id, kind)
        if record is None:
            return SoftResult(None, [])
        access_token, access_warning = self._open(record.access_token, "access_token")
        refresh_token, refresh_warning = self._open(record.refresh_token, "refresh_token")
        warnings = [w for w in (access_warning, refresh_warning) if w]
        return SoftResult(replace(record, access_token=access_token, refresh_token=refresh_token), warnings)

    def upsert(self, record: IntegrationRecord) -> SoftResult[IntegrationRecord]:
        """
        Insert or update keyed on (user_id, provider, kind).
        A missing refresh_token keeps the stored one; Google only issues it on first consent.
        The returned record carries the caller's plaintext tokens.
        """
        sealed_access, access_warning = self._seal(record.access_token, "access_token")
        sealed_refresh, refresh_warning = self._seal(record.refresh_token, "refresh_token")
        warnings = [w for w in (access_warning, refresh_warning) if w]

        try:
            stored = self._write(record, sealed_access, sealed_refresh)
        except IntegrityError:
            # A concurrent first insert won the unique key; apply ours as an update.
            logger.info("Concurrent insert for %s/%s, retrying as update", record.user_id, record.kind)
            stored = self._write(record, sealed_access, sealed_refresh)

        stored = replace(stored, access_token=record.access_token, refresh_token=record.refresh_token)
        return SoftResult(stored, warnings)

    def _write(
        self,
        record: IntegrationRecord,
        sealed_access: Optional[str],
        sealed_refresh: Optional[str],
    ) -> IntegrationRecord:
        now = _utcnow()
        db = self.session_factory()
        try:
            row = self._query_row(db, record.user_id, record.kind)
            if row:
                row.workspace_id = record.workspace_id or row.workspace_id
                row.email = record.email or row.email
                row.access_token = sealed_access
                if sealed_refresh is not None:
                    row.refresh_token = sealed_refresh
                row.expires_at = record.expires_at
                row.scopes = list(record.scopes) if record.scopes else row.scopes
                row.last_synced_at = record.last_synced_at or now
                row.token_version = (row.token_version or 0) + 1
                row.updated_at = now
            else:
                row = UserIntegration(
                    user_id=record.user_id,
                    workspace_id=record.workspace_id,
                    provider=GOOGLE_PROVIDER,
                    kind=record.kind,
                    email=record.email,
                    access_token=sealed_access,
                    refresh_token=sealed_refresh,
                    expires_at=record.expires_at,
                    scopes=list(record.scopes or []),
                    last_synced_at=record.last_synced_at or now,
                    token_version=0,
                    created_at=now,
                    updated_at=now,
                )
                db.add(row)
            db.commit()
            db.refresh(row)
            return IntegrationRecord.from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def rotate_access_token(
        self,
        record: IntegrationRecord,
        access_token: str,
        expires_at: Optional[datetime],
        scopes: Optional[List[str]] = None,
    ) -> Optional[SoftResult[IntegrationRecord]]:
        """
        Persist a refreshed access token only if nobody rotated it since `record` was read.
        Returns None when another request won the race.
        """
        sealed_access, warning = self._seal(access_token, "access_token")
        now = _utcnow()
        values: dict[str, Any] = {
            "access_token": sealed_access,
            "expires_at": expires_at,
            "last_synced_at": now,
            "updated_at": now,
            "token_version": record.token_version + 1,
        }
        if scopes:
            values["scopes"] = list(scopes)

        db = self.session_factory()
        try:
            result = db.execute(
                update(UserIntegration)
                .where(UserIntegration.id == record.id)
                .where(UserIntegration.token_version == record.token_version)
                .values(**values)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if result.rowcount == 0:
            logger.info("Token for integration %s was rotated concurrently", record.id)
            return None
        rotated = replace(
            record,
            access_token=access_token,
            expires_at=expires_at,
            scopes=list(scopes) if scopes else record.scopes,
            last_synced_at=now,
            updated_at=now,
            token_version=record.token_version + 1,
        )
        return SoftResult(rotated, [warning] if warning else [])

    # ------------------------------------------------------------------
    # Workspace lookups
    # ------------------------------------------------------------------

    def get_workspace_id(self) -> Optional[str]:
        db = self.session_factory()
        try:
            row = db.query(WorkspaceSettings).order_by(WorkspaceSettings.created_at.asc()).first()
            return row.id if row else None
        finally:
            db.close()

    def resolve_credentials(
        self,
        workspace_id: Optional[str],
        kind: str,
        centralized: Optional[WorkspaceCredentials],
    ) -> WorkspaceCredentials:
        """Environment credentials win; the workspace_integrations table is the legacy fallback."""
        if centralized:
            return centralized
        db = self.session_factory()
        try:
            row = (
                db.query(WorkspaceIntegration)
                .filter_by(workspace_id=workspace_id, provider=GOOGLE_PROVIDER, kind=kind)
                .one_or_none()
            )
        finally:
            db.close()
        if not row:
            raise ConfigurationError(f"No workspace credentials found for {kind}")
        return WorkspaceCredentials(
            client_id=row.client_id,
            client_secret=row.client_secret,
            redirect_uri=row.redirect_uri,
        )

    # ------------------------------------------------------------------
    # email_logs
    # ------------------------------------------------------------------

    def record_email_log(
        self,
        *,
        user_id: str,
        recipient_email: str,
        subject: str,
        message_id: Optional[str],
        quote_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> Optional[str]:
        """Best-effort insert. Returns a warning instead of raising."""
        db = self.session_factory()
        try:
            db.add(
                EmailLog(
                    user_id=user_id,
                    quote_id=quote_id,
                    invoice_id=invoice_id,
                    recipient_email=recipient_email,
                    subject=subject,
                    message_id=message_id,
                    provider="gmail",
                    status="sent",
                    sent_at=_utcnow(),
                )
            )
            db.commit()
            return None
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Failed to log email: %s", exc)
            return f"Failed to log email: {exc.__class__.__name__}"
        finally:
            db.close()
