# Load environment variables FIRST, before any module imports that need them
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import CORS_ORIGINS
from .errors import DeliveryError
from .logging_config import setup_logging
from .middleware import RequestIDMiddleware
from .routes import limiter, orders_router, payments_router, tracking_router
from .services.notifications import NotificationDispatcher
from .services.tracking import TrackingChannel

# Configure logging at module load time
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.notifier.shutdown()


async def delivery_error_handler(request: Request, exc: DeliveryError) -> JSONResponse:
    """Render service errors as {"success": false, "error": code, "message": text}."""
    logger.debug("%s %s -> %s", request.method, request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message},
    )


def create_app(
    tracking_channel: Optional[TrackingChannel] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        tracking_channel: Live subscriber registry shared by all requests.
                          A new one is created if not provided.
        notifier: Notification dispatcher. Defaults to the logging provider.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Delivery Hub API",
        description="Order lifecycle, dispatch and live tracking for food delivery",
        version="1.0.0",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Health", "description": "Health check endpoints"},
            {"name": "Orders", "description": "Placing, listing and moving orders"},
            {"name": "Tracking", "description": "Agent location and delivery progress"},
            {"name": "Payments", "description": "Payment gateway callback"},
        ],
    )

    app.state.tracking_channel = tracking_channel or TrackingChannel()
    app.state.notifier = notifier or NotificationDispatcher()

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(DeliveryError, delivery_error_handler)

    # Include routers with API version prefix
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(orders_router)
    api_v1.include_router(tracking_router)
    api_v1.include_router(payments_router)
    app.include_router(api_v1)

    # Also mount at root for backward compatibility
    app.include_router(orders_router)
    app.include_router(tracking_router)
    app.include_router(payments_router)

    @app.get("/health", tags=["Health"])
    def health_check():
        return {"status": "healthy"}

    logger.info("Delivery Hub application created")
    return app


app = create_app()
