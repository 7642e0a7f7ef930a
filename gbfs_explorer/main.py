"""FastAPI application setup for the GBFS explorer."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import router as api_router
from .config import settings
from .errors import ExplorerError
from utils.logging_utils import get_tagged_logger, setup_logging

setup_logging(level=settings.log_level, job_name="gbfs_explorer")
logger = get_tagged_logger(__name__, tag="main")

app = FastAPI(title="GBFS Explorer")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Client-Id"],
)


@app.exception_handler(ExplorerError)
async def explorer_error_handler(request: Request, exc: ExplorerError):
    """Render service errors as {"error": message} with their status."""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and parameters are client errors."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {problems}"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


# API routes
app.include_router(api_router, prefix="/api")
