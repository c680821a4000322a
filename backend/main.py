# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
FastAPI application factory.

Responsibilities
----------------
* Build the per-app collaborators from ``Settings`` (DB engine, session
  factory, token codec, rate limiter, mailer, GitHub client) and keep them
  on ``app.state``.
* Register CORS, security-header and request-logging middleware.
* Install the JSON error handlers.
* Mount the feature routers (auth, 2fa, users, admin).
* Expose a /health endpoint for container liveness checks.

Run with::

    uvicorn --factory main:create_app --app-dir backend
"""

import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

import models.audit_log  # noqa: F401  (register tables on Base.metadata)
import models.password_reset  # noqa: F401
import models.two_factor  # noqa: F401
import models.user  # noqa: F401
from admin.router import router as admin_router
from auth.github import GitHubOAuth
from auth.router import router as auth_router
from core.config import Settings, get_settings
from core.exceptions import register_exception_handlers
from core.logger import logger
from core.mailer import Mailer
from core.ratelimit import RateLimiter
from core.security import TokenCodec, get_client_ip
from database import Base, make_engine, make_session_factory
from twofactor.router import router as twofactor_router
from users.router import router as users_router


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
# Logs every inbound request: method, path, client IP, status, latency.
# Request bodies (passwords, codes, tokens) are NOT echoed – only the URL and
# metadata are recorded.

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


class _RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, client IP, response status and latency (ms); add security headers."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        for name, value in _SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)

        logger.info(
            "%s %s | client=%s status=%d latency=%.1fms",
            request.method,
            request.url.path,
            get_client_ip(request),
            response.status_code,
            elapsed_ms,
        )
        return response


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info("Account service starting up")
    if settings.auto_create_tables:
        await run_in_threadpool(Base.metadata.create_all, bind=app.state.engine)
        logger.info("Database tables created (AUTO_CREATE_TABLES)")
    # Non-fatal: only logs when SMTP is unreachable
    await run_in_threadpool(app.state.mailer.test_connection)
    yield
    app.state.engine.dispose()
    logger.info("Account service shutting down")


def create_app(
    settings: Optional[Settings] = None,
    *,
    mailer=None,
    github=None,
) -> FastAPI:
    """
    Build the application.  *mailer* and *github* replace the SMTP mailer and
    the GitHub client (the test-suite passes recording fakes).
    """
    settings = settings or get_settings()

    app = FastAPI(title="Account Service", version="1.0.0", lifespan=_lifespan)

    engine = make_engine(settings.database_url)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.token_codec = TokenCodec(
        settings.secret_key,
        timedelta(minutes=settings.session_token_expire_minutes),
    )
    app.state.rate_limiter = RateLimiter(settings)
    app.state.mailer = mailer or Mailer(settings)
    app.state.github = github or GitHubOAuth(settings)

    # Cookies are the credential, so the frontend origin must be explicit
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type"],
    )
    app.add_middleware(_RequestLogMiddleware)

    register_exception_handlers(app)

    app.include_router(auth_router)
    app.include_router(twofactor_router)
    app.include_router(users_router)
    app.include_router(admin_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
