from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.config import settings
from app.errors import AppError, ErrorKind, MESSAGES
from app.logging_setup import configure_logging
from app.routes.system import router as system_router
from app.routes.participants import router as participants_router
from app.routes.completions import router as completions_router
from app.routes.photos import router as photos_router
from app.routes.comments import router as comments_router
from app.routes.votes import router as votes_router
import structlog

configure_logging(settings.log_level)
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version,
             git_sha=settings.git_sha, event_year=settings.event_year)
    yield
    # Shutdown
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} API for participants, completions and photo uploads"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system_router)
app.include_router(participants_router)
app.include_router(completions_router)
app.include_router(photos_router)
app.include_router(comments_router)
app.include_router(votes_router)

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status >= 500:
        log.warning("request.failed", path=request.url.path, code=exc.code, status=exc.status)
    return JSONResponse(status_code=exc.status, content=exc.to_response())

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("request.unhandled", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": MESSAGES[ErrorKind.INTERNAL], "code": ErrorKind.INTERNAL.value},
    )

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
