from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from .config import settings
from .db import db_ping, Base, engine
from .errors import (
    GENERIC_AUTH_MESSAGE,
    AuthError,
    ConflictError,
    InternalError,
    UnauthorizedError,
    ValidationError,
)
from .logs import get_logger, log_security_event
from . import models  # ensure models are registered
from .routes import core, fido

logger = get_logger("passgate.main")

app = FastAPI(title="Passgate", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

# Create tables on startup (no migrations yet)
@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)

# ---------- Error mapping ----------
# Every ceremony failure, and malformed input on the ceremony routes, leaves
# the service as the same response so callers cannot probe for usernames.
def _generic_auth_failure() -> JSONResponse:
    return JSONResponse({"error": GENERIC_AUTH_MESSAGE}, status_code=401)

@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return _generic_auth_failure()

@app.exception_handler(ValidationError)
@app.exception_handler(ConflictError)
async def input_error_handler(request: Request, exc: Exception):
    log_security_event("input_rejected", False, path=request.url.path, reason=str(exc))
    return _generic_auth_failure()

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    log_security_event("payload_rejected", False, path=request.url.path, errors=len(exc.errors()))
    return _generic_auth_failure()

@app.exception_handler(UnauthorizedError)
async def unauthorized_handler(request: Request, exc: UnauthorizedError):
    return JSONResponse({"error": "Unauthorized"}, status_code=401)

@app.exception_handler(InternalError)
@app.exception_handler(SQLAlchemyError)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error("internal error on %s", request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal Server Error"}, status_code=500)

# ---------- Health ----------
@app.get("/healthz")
def healthz():
    return {
        "status": "ok",
        "db": "up" if db_ping() else "down",
    }

# Gateway proxy compat: /api/healthz -> /healthz
@app.get("/api/healthz")
def healthz_alias():
    return healthz()

# API v1 mount
app.include_router(core.router)
app.include_router(fido.router)

@app.get("/")
def root():
    return {"service": "passgate", "version": "0.1.0"}
