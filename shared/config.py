import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from shared.errors import ConfigurationError
from utils.token_crypto import derive_key

GOOGLE_PROVIDER = "google"
INTEGRATION_KINDS = ("gmail", "calendar")


def get_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return an environment setting with an optional default."""
    return os.getenv(name, default)


def get_required_setting(name: str) -> str:
    """Return a required environment setting or raise a ConfigurationError."""
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


def get_database_url() -> str:
    """
    Return the database URL for SQLAlchemy.
    Defaults to a local SQLite file for development if not provided.
    """
    return os.getenv("DATABASE_URL") or os.getenv("POSTGRES_CONNECTION_STRING") or "sqlite:///./data/app.db"


def _int_setting(name: str, default: int) -> int:
    raw = get_setting(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_origins(raw: str) -> Tuple[str, ...]:
    origins = []
    for origin in raw.split(","):
        cleaned = origin.strip().rstrip("/")
        if cleaned and cleaned not in origins:
            origins.append(cleaned)
    return tuple(origins)


@dataclass(frozen=True)
class WorkspaceCredentials:
    client_id: str
    client_secret: str
    redirect_uri: str


@dataclass(frozen=True)
class Settings:
    """
    Deployment configuration, resolved once when the Functions host starts.
    Handlers receive this object instead of reading the environment.
    """

    app_url: str
    jwt_secret: str
    supabase_url: str
    supabase_service_role_key: str
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None
    encryption_key: Optional[str] = None
    database_url: str = "sqlite:///./data/app.db"
    allowed_origins: Tuple[str, ...] = field(default_factory=tuple)
    http_timeout: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        app_url = get_required_setting("APP_URL").rstrip("/")
        settings = cls(
            app_url=app_url,
            jwt_secret=get_required_setting("JWT_SECRET"),
            supabase_url=get_required_setting("SUPABASE_URL").rstrip("/"),
            supabase_service_role_key=get_required_setting("SUPABASE_SERVICE_ROLE_KEY"),
            google_client_id=get_setting("GOOGLE_CLIENT_ID") or None,
            google_client_secret=get_setting("GOOGLE_CLIENT_SECRET") or None,
            google_redirect_uri=get_setting("GOOGLE_REDIRECT_URI") or None,
            encryption_key=get_setting("ENCRYPTION_KEY") or None,
            database_url=get_database_url(),
            allowed_origins=_parse_origins(",".join([app_url, get_setting("ALLOWED_ORIGINS", "") or ""])),
            http_timeout=_int_setting("HTTP_TIMEOUT_SECONDS", 10),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.encryption_key:
            try:
                derive_key(self.encryption_key)
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc

    @property
    def centralized_credentials(self) -> Optional[WorkspaceCredentials]:
        """Google app credentials from the environment, if configured."""
        if not self.google_client_id or not self.google_client_secret:
            return None
        return WorkspaceCredentials(
            client_id=self.google_client_id,
            client_secret=self.google_client_secret,
            redirect_uri=self.google_redirect_uri or f"{self.app_url}/oauth/callback",
        )

    @property
    def frontend_redirect_uri(self) -> str:
        return f"{self.app_url}/oauth/callback"
