"""
Order Tracker — FastAPI Application

Presentation adapter for the order lifecycle coordinator: one "view" per
tracked order, fed by fetches, a 30s background poll and Socket.IO pushes,
with cancellation and payment workflows on top.
"""
import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from domain.errors import OrderFlowError
from domain.responses import error_response
from routes import actions, cancellation, health, payments, session, views

# ── Logging ─────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: validate settings, start the session and the view registry."""
    settings.validate_production_settings()

    from services.order_coordinator import OrderViewRegistry, has_registry, get_registry, set_registry
    from services.session_state import get_session_state

    session_state = get_session_state()
    if not session_state.is_authenticated:
        session_state.init(None)
    if not has_registry():
        set_registry(OrderViewRegistry(session_state))
    logger.info("Order view registry ready")

    yield  # app runs here

    # Close every view (leave rooms, stop polls) before the HTTP client goes
    try:
        await get_registry().aclose()
    finally:
        set_registry(None)
        session_state.teardown()

    from services.async_executor import shutdown_executor
    shutdown_executor()

    logger.info("Shutting down")


# ── App Factory ─────────────────────────────────────────────────────

app = FastAPI(
    title="Order Tracker API",
    description="Order tracking, cancellation and payment coordinator",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routes ──────────────────────────────────────────────────────────

app.include_router(health.router)
app.include_router(session.router)
app.include_router(views.router)
app.include_router(cancellation.router)
app.include_router(payments.router)
app.include_router(actions.router)


# ── Exception Handlers ──────────────────────────────────────────────


def _error_code(exc: Exception) -> str:
    """FetchError -> fetch_error, RetryLimitExceeded -> retry_limit_exceeded."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", exc.__class__.__name__).lower()


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """
    Catch-all for unhandled exceptions.

    Never return raw exception details to clients; the traceback is logged.
    """
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_response("internal_server_error", "Internal server error"),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """
    Standardize HTTPException responses for frontend consumers.

    Keeps the original HTTP status code, but wraps the payload.
    """
    if isinstance(exc, OrderFlowError):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(_error_code(exc), exc.message, exc.details, exc.retryable),
        )

    # Regular HTTPException
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response("http_error", message, detail if not isinstance(detail, str) else None),
    )


# ── Entrypoint ──────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    import os
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
