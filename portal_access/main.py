import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from portal_access.config import settings
from portal_access.core.exceptions import AccessControlError, AccessDataError, AuthenticationError
from portal_access.database.supabase_client import SupabaseClient
from portal_access.modules.auth import routes as auth_routes
from portal_access.modules.permissions import routes as permissions_routes
from portal_access.modules.navigation import routes as navigation_routes
from portal_access.modules.scopes import routes as scopes_routes
from portal_access.modules.continuity import routes as continuity_routes
from portal_access.modules.continuity.service import continuity_registry

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# Responses under these prefixes describe one user's session and must never be cached
NO_STORE_PREFIXES = (
    f"{API_PREFIX}/auth",
    f"{API_PREFIX}/navigation",
    f"{API_PREFIX}/scopes",
    f"{API_PREFIX}/session-continuity",
    f"{API_PREFIX}/permissions",
)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    description="Access control, scope transitions and session continuity for the rights portal",
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AccessControlError)
async def access_control_exception_handler(request: Request, exc: AccessControlError):
    if isinstance(exc, AuthenticationError):
        status_code = 401
    elif isinstance(exc, AccessDataError):
        status_code = 503
    else:
        status_code = 400
    logger.warning(f"{request.method} {request.url.path} failed with {exc}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        no_store = scope.get("path", "").startswith(NO_STORE_PREFIXES)

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"Referrer-Policy", b"same-origin"),
                ])
                if no_store:
                    message["headers"].append((b"Cache-Control", b"no-store"))
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Tab-Id"],
)

app.include_router(auth_routes.router, prefix=API_PREFIX)
app.include_router(permissions_routes.router, prefix=API_PREFIX)
app.include_router(navigation_routes.router, prefix=API_PREFIX)
app.include_router(scopes_routes.router, prefix=API_PREFIX)
app.include_router(continuity_routes.router, prefix=API_PREFIX)


@app.on_event("startup")
async def startup_event():
    logger.info(
        f"Starting {settings.app_name} ({settings.environment}); "
        f"idle timeout {settings.inactivity_timeout_minutes}m, "
        f"absolute session {settings.absolute_session_hours}h, "
        f"entry intent TTL {settings.entry_intent_ttl_seconds}s"
    )
    if not settings.supabase_service_role_key:
        logger.warning("SUPABASE_SERVICE_ROLE_KEY not set; audit rows are written with the anon client")


@app.on_event("shutdown")
async def shutdown_event():
    continuity_registry.clear()
    logger.info("Continuity guards released, shutting down")


@app.get("/")
async def root():
    return {"service": settings.app_name, "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness probe: Supabase must be configured."""
    if not SupabaseClient.is_configured():
        return JSONResponse(status_code=503, content={"status": "not ready", "detail": "Supabase is not configured"})
    return {"status": "ready"}
