from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from botdesk.core.config import settings
from botdesk.core.exceptions import BotDeskError
from botdesk.core.firebase import init_firebase
from botdesk.core.database import engine, Base
from botdesk.core.rate_limit_middleware import RateLimitMiddleware
from botdesk.api.v1.router import api_router
from importlib.metadata import PackageNotFoundError, version
import logging

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def get_version() -> str:
    """Installed package version, fallback to default when running from a checkout."""
    try:
        return version("botdesk")
    except PackageNotFoundError:
        return "1.0.0"


# Initialize Firebase
init_firebase()

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="BotDesk API",
    version=get_version(),
    redirect_slashes=False,
)

# Add CORS middleware (must be first, before rate limiting)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add rate limiting middleware (applies to all requests)
app.add_middleware(RateLimitMiddleware)


@app.exception_handler(BotDeskError)
async def botdesk_error_handler(request: Request, exc: BotDeskError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {type(exc).__name__} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path}: Unhandled error - {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(api_router, prefix=settings.api_v1_str)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
