import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from permitflow import __version__
from permitflow.core.config import get_settings
from permitflow.core.errors import PermitFlowError
from permitflow.api.routers import health, permits, push

logger = logging.getLogger(__name__)
settings = get_settings()

PUSH_PREFIX = "/api/push"

app = FastAPI(
    title=settings.app_name,
    description="Permit-to-work lifecycle and notification service",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(permits.router, prefix="/api")
app.include_router(push.router, prefix="/api")
app.include_router(health.router)


def error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    """Render an error in the envelope of the route family that raised it."""
    if request.url.path.startswith(PUSH_PREFIX):
        content = {"ok": False, "error": message}
    else:
        content = {"success": False, "message": message}
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(PermitFlowError)
async def permitflow_error_handler(request: Request, exc: PermitFlowError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return error_response(request, exc.status_code, "Server error")
    return error_response(request, exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(request, 422, "Invalid request")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(request, 500, "Server error")


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }
