import azure.functions as func
from dotenv import load_dotenv

from services.calendar_proxy import CalendarProxyHandler
from services.gmail_send import GmailSendHandler
from services.google_api import GoogleClient
from services.integration_store import IntegrationStore
from services.oauth_flow import (
    IntegrationConnector,
    OAuthCallbackHandler,
    OAuthExchangeHandler,
    OAuthStartHandler,
    TokenRefreshHandler,
)
from services.session_auth import SupabaseSessionVerifier
from services.token_refresh import TokenRefresher
from shared.config import Settings
from shared.db import create_db_engine, create_session_factory, init_db

# Load local .env for dev convenience (local.settings.json is handled by Functions host)
load_dotenv()

# Resolved once when the Functions host starts; a missing variable stops the host here.
settings = Settings.from_env()

engine = create_db_engine(settings.database_url)
SessionLocal = create_session_factory(engine)
init_db(engine)

google = GoogleClient(timeout=settings.http_timeout)
verifier = SupabaseSessionVerifier(
    settings.supabase_url, settings.supabase_service_role_key, timeout=settings.http_timeout
)
store = IntegrationStore(SessionLocal, settings.encryption_key)
refresher = TokenRefresher(store, google)
connector = IntegrationConnector(settings, store, google)

oauth_start_handler = OAuthStartHandler(settings, verifier, store)
oauth_exchange_handler = OAuthExchangeHandler(settings, verifier, connector)
oauth_callback_handler = OAuthCallbackHandler(settings, connector)
token_refresh_handler = TokenRefreshHandler(settings, verifier, store, refresher)
calendar_proxy_handler = CalendarProxyHandler(settings, verifier, store, refresher, google)
gmail_send_handler = GmailSendHandler(settings, verifier, store, refresher, google)

app = func.FunctionApp()

# Import routes so they register with the shared app instance.
import oauth_endpoints  # noqa: E402,F401
import calendar_endpoints  # noqa: E402,F401
import gmail_endpoints  # noqa: E402,F401
