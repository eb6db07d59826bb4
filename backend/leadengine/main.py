"""FastAPI application entry point."""

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from leadengine.config import settings
from leadengine.api import audit, health, leads, webhooks
from leadengine.api.health import ERRORS
from leadengine.errors import (
    ConcurrencyConflict, ConversionError, InvalidTransition, LeadEngineError, LeadNotFound, RateLimitError,
    ValidationError,
)
from leadengine.middleware.auth import create_admin_token

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)

logger = structlog.get_logger()

app = FastAPI(
    title=settings.app_name,
    description="Inbound lead intake, scoring, speed-to-lead auto-response and conversion",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS - allow dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health.router, prefix=settings.api_prefix)
app.include_router(webhooks.router, prefix=settings.api_prefix)
app.include_router(leads.router, prefix=settings.api_prefix)
app.include_router(audit.router, prefix=settings.api_prefix)

ERROR_STATUS = [
    (ValidationError, 422),
    (RateLimitError, 429),
    (InvalidTransition, 409),
    (ConcurrencyConflict, 409),
    (LeadNotFound, 404),
    (ConversionError, 503),
]


@app.exception_handler(LeadEngineError)
async def lead_engine_error_handler(request: Request, exc: LeadEngineError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    ERRORS.labels(type=exc.code).inc()
    logger.info("request_failed", path=request.url.path, error=exc.code, reason=exc.reason, status=status_code)

    content = {"error": exc.code, "message": exc.reason}
    headers = None
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    if isinstance(exc, InvalidTransition):
        content["current_status"] = exc.current
        content["target_status"] = exc.target
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs",
    }


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    token: str
    email: str


@app.post(f"{settings.api_prefix}/auth/login", response_model=LoginResponse)
async def login(req: LoginRequest):
    """Simple admin login. Returns JWT token."""
    if req.email == settings.admin_email and req.password == settings.admin_password:
        token = create_admin_token(req.email)
        return LoginResponse(token=token, email=req.email)
    raise HTTPException(status_code=401, detail="Invalid credentials")
