"""
main.py - CVCoach FastAPI application entry point.

Start with: uvicorn cvcoach.main:app --reload --port 8000
(run from the repository root)
"""
import asyncio
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cvcoach.config import settings

# ---------------------------------------------------------------------------
# Logging - configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _build_payment_gateway(http: httpx.AsyncClient):
    from cvcoach.integrations.payments import PaymentGateway, PaystackProvider, StripeProvider

    providers = {
        "stripe": StripeProvider(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            price_id=settings.stripe_price_id,
            amount_minor=settings.advanced_review_price,
            currency=settings.payment_currency,
            success_url=settings.payment_success_url,
            cancel_url=settings.payment_cancel_url,
        ),
        "paystack": PaystackProvider(
            http=http,
            secret_key=settings.paystack_secret_key,
            api_base=settings.paystack_api_base,
            amount_minor=settings.advanced_review_price,
            currency=settings.payment_currency,
            callback_url=settings.payment_success_url,
        ),
    }
    return PaymentGateway(
        providers=providers,
        active=settings.payment_provider,
        fallback_url=settings.payment_fallback_url,
        timeout_s=settings.payment_link_timeout_s,
    )


# ---------------------------------------------------------------------------
# Lifespan - startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations
      2. Initialize Redis connection pool (conversation sessions)
      3. Shared httpx client (Twilio + Paystack)
      4. Scorer (Mistral when configured, local otherwise)
      5. Collaborators + review graph + ConversationService
      6. Retention sweep task
    Shutdown:
      Cancel retention task, close httpx client and Redis pool
    """
    # --- 1. Database: run Alembic migrations ---
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)

    # --- 2. Redis: session store ---
    from cvcoach.cache import RedisSessionStore, create_redis_pool
    app.state.redis = await create_redis_pool(settings.redis_url)
    session_store = RedisSessionStore(app.state.redis, ttl_seconds=settings.session_ttl_days * 86400)

    # --- 3. Shared HTTP client ---
    app.state.http = httpx.AsyncClient(timeout=httpx.Timeout(settings.download_timeout_s))

    # --- 4. Scorer - semaphore MUST be created inside async context ---
    from cvcoach.pipeline.scorer import build_scorer
    app.state.scoring_semaphore = asyncio.Semaphore(2)
    scorer = build_scorer(
        api_key=settings.mistral_api_key,
        model=settings.mistral_model,
        timeout_s=settings.remote_scoring_timeout_s,
        semaphore=app.state.scoring_semaphore,
    )
    logger.info("Scorer initialized (%s)", type(scorer).__name__)

    # --- 5. Collaborators, review graph, conversation service ---
    from cvcoach.conversation.machine import TurnServices
    from cvcoach.conversation.service import ConversationService
    from cvcoach.database import AsyncSessionLocal
    from cvcoach.graph.graph import ReviewPipeline
    from cvcoach.graph.nodes import ReviewResources
    from cvcoach.integrations.email import SmtpMailer
    from cvcoach.integrations.storage import LocalObjectStorage
    from cvcoach.integrations.twilio import TwilioMessenger
    from cvcoach.store import SqlProfileDirectory, SqlReviewArchive

    app.state.storage = LocalObjectStorage(
        root=settings.storage_dir,
        public_base_url=settings.public_base_url,
        signing_key=settings.link_signing_key,
    )
    app.state.payment_gateway = _build_payment_gateway(app.state.http)
    archive = SqlReviewArchive(AsyncSessionLocal)

    mailer = None
    if settings.smtp_host:
        mailer = SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_from,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout_s=settings.email_timeout_s,
        )
    else:
        logger.warning("SMTP_HOST not set - review emails disabled")

    reviewer = ReviewPipeline(
        ReviewResources(
            scorer=scorer,
            storage=app.state.storage,
            archive=archive,
            mailer=mailer,
            brand=settings.bot_name,
            report_link_ttl_s=settings.report_link_ttl_s,
            extraction_timeout_s=settings.extraction_timeout_s,
            report_timeout_s=settings.report_timeout_s,
            upload_timeout_s=settings.upload_timeout_s,
        )
    )
    messenger = TwilioMessenger(
        http=app.state.http,
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_whatsapp_number,
        api_base=settings.twilio_api_base,
        max_upload_bytes=settings.max_upload_bytes,
        download_timeout_s=settings.download_timeout_s,
    )
    app.state.conversation = ConversationService(
        session_store,
        TurnServices(
            messenger=messenger,
            payments=app.state.payment_gateway,
            storage=app.state.storage,
            reviewer=reviewer,
            profiles=SqlProfileDirectory(AsyncSessionLocal),
            bot_name=settings.bot_name,
        ),
    )
    logger.info("CVCoach review pipeline compiled and ready")

    # --- 6. Retention sweep ---
    from cvcoach.retention import run_periodically
    app.state.retention_task = asyncio.create_task(
        run_periodically(
            app.state.storage,
            archive,
            horizon=timedelta(hours=settings.retention_hours),
            interval_s=settings.retention_sweep_interval_s,
        )
    )

    logger.info("CVCoach v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    app.state.retention_task.cancel()
    try:
        await app.state.retention_task
    except asyncio.CancelledError:
        pass
    await app.state.http.aclose()
    await app.state.redis.aclose()
    logger.info("Redis connection pool closed")
    logger.info("CVCoach shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="CVCoach API",
    version=settings.app_version,
    description=(
        "WhatsApp CV review assistant. Extracts and scores uploaded CVs, "
        "gates the advanced review behind payment, and delivers PDF reports."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware - restricted to origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers - registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Returns ALL field violations in one 422 response."""
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc not in ("body", "query", "path"))
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        413: "FILE_TOO_LARGE",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  -> includes exception type & message in details (dev only).
    DEBUG=false -> generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Conversation + payment webhooks, signed file links
# ---------------------------------------------------------------------------
from cvcoach.conversation.routes import router as conversation_router

app.include_router(conversation_router)
