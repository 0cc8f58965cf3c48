"""Dependency injection for FastAPI routes."""

import time
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from jwt import PyJWKClient

from splitsync.config import get_settings, Settings
from splitsync.database import Database, get_admin_client, get_authenticated_postgrest_client
from splitsync.services.plaid_service import PlaidService
from splitsync.services.recurring_service import RecurringService
from splitsync.services.sync_service import SyncLocks, SyncService
from splitsync.services.webhook_service import WebhookProcessor, WebhookTracker


security = HTTPBearer()

# Cache for JWKS client
_jwks_client: PyJWKClient | None = None
_jwks_client_timestamp: float = 0
JWKS_CACHE_TTL = 3600  # 1 hour


def get_jwks_client(settings: Settings) -> PyJWKClient:
    """Get cached JWKS client for Supabase JWT verification."""
    global _jwks_client, _jwks_client_timestamp

    current_time = time.time()

    # Refresh if cache expired or not initialized
    if _jwks_client is None or (current_time - _jwks_client_timestamp) > JWKS_CACHE_TTL:
        jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
        _jwks_client = PyJWKClient(jwks_url)
        _jwks_client_timestamp = current_time

    return _jwks_client


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_with_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> tuple[dict, str]:
    """
    Validate JWT token using JWKS and return (user_dict, token).

    The user dict is built from the verified claims. FastAPI caches this
    per-request so it only runs once even when both get_current_user and
    get_database depend on it.
    """
    token = credentials.credentials

    try:
        # Get the signing key from JWKS
        jwks_client = get_jwks_client(settings)
        signing_key = jwks_client.get_signing_key_from_jwt(token)

        # Verify and decode the JWT
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience="authenticated",
            issuer=f"{settings.supabase_url}/auth/v1",
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {str(e)}")
    except jwt.PyJWKClientError as e:
        raise _unauthorized(f"Token verification failed: {str(e)}")

    user_id: str | None = payload.get("sub")
    if user_id is None:
        raise _unauthorized("Invalid token: missing user ID")

    user = {"id": user_id, "email": payload.get("email")}
    return user, token


async def get_current_user(
    user_and_token: tuple[dict, str] = Depends(get_current_user_with_token),
) -> dict:
    """Return just the user dict."""
    user, _token = user_and_token
    return user


async def get_database(
    user_and_token: tuple[dict, str] = Depends(get_current_user_with_token),
) -> Database:
    """Get a Database instance authenticated with the current user's JWT.

    PostgREST sees auth.uid() from the JWT, so RLS policies work.
    """
    _user, token = user_and_token
    client = get_authenticated_postgrest_client(token)
    return Database(client)


async def get_admin_database() -> Database:
    """Service-role Database for callers without a user JWT (Plaid webhooks)."""
    client = await get_admin_client()
    return Database(client)


def get_plaid_service(settings: Settings = Depends(get_settings)) -> PlaidService:
    return PlaidService.from_settings(settings)


def get_sync_locks(request: Request) -> SyncLocks:
    """Per-worker sync locks created in the app lifespan."""
    return request.app.state.sync_locks


def get_webhook_tracker(request: Request) -> WebhookTracker:
    return request.app.state.webhook_tracker


def get_sync_service(
    db: Database = Depends(get_database),
    plaid: PlaidService = Depends(get_plaid_service),
    settings: Settings = Depends(get_settings),
    locks: SyncLocks = Depends(get_sync_locks),
) -> SyncService:
    return SyncService(db, plaid, settings, locks)


def get_recurring_service(
    db: Database = Depends(get_database),
    plaid: PlaidService = Depends(get_plaid_service),
) -> RecurringService:
    return RecurringService(db, plaid)


def get_webhook_processor(
    db: Database = Depends(get_admin_database),
    plaid: PlaidService = Depends(get_plaid_service),
    settings: Settings = Depends(get_settings),
    locks: SyncLocks = Depends(get_sync_locks),
    tracker: WebhookTracker = Depends(get_webhook_tracker),
) -> WebhookProcessor:
    """Webhook processor wired to the service-role database."""
    return WebhookProcessor(
        db,
        SyncService(db, plaid, settings, locks),
        RecurringService(db, plaid),
        settings,
        tracker,
    )
