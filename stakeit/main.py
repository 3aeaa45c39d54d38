"""
StakeIt Backend - FastAPI Application

Main entry point for the commitment-contract API.
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from stakeit.config import get_settings
from stakeit.errors import StakeItError
from stakeit.logging_config import get_logger, setup_logging
from stakeit.routers import goals, payments, verify
from stakeit.services.notifier import Notifier, WebhookChannel, log_channel

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.json_logs)

    # Startup
    notifier = Notifier([log_channel])
    if settings.notification_webhook_url:
        notifier.add_channel(WebhookChannel(settings.notification_webhook_url))
    notifier.start()
    app.state.notifier = notifier
    logger.info("stakeit_starting", environment=settings.environment, store=settings.store_backend)
    yield
    # Shutdown
    await notifier.stop()
    logger.info("stakeit_stopped")


app = FastAPI(
    title="StakeIt API",
    description="""
    Commitment contracts - put money on your goals.
    
    ## Features
    - Users stake money on a goal spanning several weekly periods
    - Referees decide each period by majority vote, or a verified
      zkTLS proof decides it automatically
    - A final referee vote confirms manually judged goals
    - Failed goals trigger the chosen penalty: forfeit, freeze & restake,
      split to group or charity donation
    """,
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StakeItError)
async def stakeit_error_handler(request: Request, exc: StakeItError):
    """Turn domain errors into the API's error envelope."""
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.detail)
    content = {"success": False, "error": exc.detail}
    if exc.fields:
        content["details"] = jsonable_encoder(exc.fields)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Validation failed",
            "details": jsonable_encoder(exc.errors()),
        },
    )


# Register routers
app.include_router(goals.router)
app.include_router(payments.router)
app.include_router(verify.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "StakeIt API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    settings = get_settings()
    
    return {
        "status": "healthy",
        "environment": settings.environment,
        "store_backend": settings.store_backend,
        "supabase_configured": bool(settings.supabase_url and settings.supabase_key),
        "payments_configured": bool(settings.payment_secret_key),
        "proof_verifier_configured": bool(settings.proof_verifier_url),
    }
