from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import logging
import traceback

from .config import get_settings
from .database import create_tables
from .exceptions import SafePathError
from .routers.errors import http_error

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, debug=settings.app_debug)

origins = settings.get_allowed_origins
if origins == ["*"]:
    # Local frontends during development
    origins = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://localhost:8081",  # Expo web
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
        "*",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info(f"CORS configured with origins: {origins}")


@app.exception_handler(SafePathError)
async def safepath_exception_handler(request: Request, exc: SafePathError):
    """Domain errors that escaped a router"""
    http_exc = http_error(exc)
    logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return proper error response"""
    logger.error(f"Unhandled exception: {str(exc)}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error occurred. Please check server logs for details.",
            "error_type": type(exc).__name__
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with detailed messages"""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder({"detail": exc.errors(), "body": exc.body}),
    )


@app.on_event("startup")
async def on_startup():
    from .services.websocket_manager import initialize_websocket_manager

    await create_tables()
    await initialize_websocket_manager()
    logger.info(f"{settings.app_name} started ({settings.app_env})")


@app.on_event("shutdown")
async def on_shutdown():
    from .dependencies import get_navigation_manager, get_oracle, get_review_feed
    from .services.websocket_manager import cleanup_websocket_manager

    await get_navigation_manager().shutdown()
    get_review_feed().close()
    await get_oracle().aclose()
    await cleanup_websocket_manager()

    # Loop-bound resources must be rebuilt if the app is started again
    for provider in (get_navigation_manager, get_review_feed, get_oracle):
        provider.cache_clear()


@app.get("/health")
async def health():
    return {"status": "ok"}


from .routers import navigation, predictions, reviews, routes  # noqa: E402

app.include_router(routes.router, prefix=settings.api_prefix, tags=["routes"])
app.include_router(predictions.router, prefix=settings.api_prefix, tags=["predictions"])
app.include_router(reviews.router, prefix=settings.api_prefix, tags=["reviews"])
app.include_router(navigation.router, prefix=settings.api_prefix, tags=["navigation"])
