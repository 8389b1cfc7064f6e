"""
CampusMarket FastAPI application.
"""
import asyncio
import logging
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from pathlib import Path
from starlette.exceptions import HTTPException as StarletteHTTPException

from campusmarket.config import settings
from campusmarket.api.v1.router import api_router
from campusmarket.core.exceptions import CampusMarketException
from campusmarket.services.payout_service import run_payout_worker

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

# Create the FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    ## CampusMarket - Campus marketplace API

    Buyers post what they are looking for, sellers on the same campus answer
    with offers, and an accepted offer becomes an order paid through Paystack.

    ### Main features:

    * **Requests** - Want-ads with expiry, images, history and analytics
    * **Offers** - Seller answers with withdraw, reject, bulk actions and search
    * **Orders** - Paystack checkout, webhook, delivery confirmation and payouts
    * **Notifications** - Persisted notifications and realtime WebSocket pushes

    ### Documentation:

    - **Swagger UI**: /docs
    - **ReDoc**: /redoc
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Static files (local uploads)
upload_path = Path(settings.UPLOAD_DIR)
upload_path.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=str(upload_path)), name="uploads")


def _error_envelope(status_code: int, message: str) -> JSONResponse:
    """4xx answers are `fail`, 5xx answers are `error`."""
    return JSONResponse(
        status_code=status_code,
        content={"status": "fail" if status_code < 500 else "error", "message": message}
    )


# Exception Handlers
@app.exception_handler(CampusMarketException)
async def campusmarket_exception_handler(request: Request, exc: CampusMarketException):
    """Handler for the typed application errors."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return _error_envelope(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handler for HTTPException raised by dependencies and routing."""
    response = _error_envelope(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handler for Pydantic validation errors; every field error in one message."""
    messages = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")]
        field = ".".join(loc)
        msg = error.get("msg", "Invalid value")
        messages.append(f"{field}: {msg}" if field else msg)

    return _error_envelope(
        status.HTTP_400_BAD_REQUEST,
        f"Invalid input data. {'. '.join(messages)}"
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last resort: log with traceback, hide the details unless DEBUG."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = str(exc) if settings.DEBUG else "Something went very wrong!"
    return _error_envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, message)


# API routers
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/", tags=["Health"])
async def root():
    """
    Root endpoint to check the API is up.
    """
    return {
        "message": "CampusMarket API",
        "version": settings.APP_VERSION,
        "status": "online",
        "docs": "/docs",
        "redoc": "/redoc"
    }


# Health check
@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check for monitoring.
    """
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


# Startup event
@app.on_event("startup")
async def startup_event():
    """
    Runs when the application starts.
    """
    logger.info(f"CampusMarket API v{settings.APP_VERSION} started")
    logger.info(f"Debug mode: {settings.DEBUG}")

    app.state.payout_stop = asyncio.Event()
    app.state.payout_task = None
    if settings.PAYOUT_WORKER_ENABLED:
        app.state.payout_task = asyncio.create_task(run_payout_worker(app.state.payout_stop))


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """
    Runs when the application stops.
    """
    task = getattr(app.state, "payout_task", None)
    if task is not None:
        app.state.payout_stop.set()
        await task
    logger.info("CampusMarket API stopped")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "campusmarket.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
