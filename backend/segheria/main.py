"""FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import DEFAULT_JWT_SECRET, settings
from .database import SessionLocal
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .routers import auth, users, clients, orders, lines, production, loads, ddt, dashboard
from .services.note_debouncer import NoteDebouncer
from .use_cases.delivery_ledger import make_note_writer

# Production safety checks (fail closed on insecure config).
if settings.ENV.lower() == "production" and settings.JWT_SECRET_KEY == DEFAULT_JWT_SECRET:
    raise RuntimeError("JWT_SECRET_KEY must be set in production.")
if settings.ENV.lower() == "production" and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.note_debouncer = NoteDebouncer(
        make_note_writer(SessionLocal),
        quiet_period=settings.NOTE_DEBOUNCE_SECONDS,
    )
    try:
        yield
    finally:
        # Notes still inside their quiet period are dropped, as when a page is closed mid-edit.
        app.state.note_debouncer.shutdown()


# Create app
app = FastAPI(
    title="Segheria Gestionale",
    version="1.0.0",
    description="Backend API for orders, production, loads and DDT of a sawmill",
    lifespan=lifespan,
)

app.add_exception_handler(DomainError, domain_error_handler)

# CORS
cors_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)

# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(clients.router, prefix="/api/v1")
app.include_router(orders.router, prefix="/api/v1")
app.include_router(lines.router, prefix="/api/v1")
app.include_router(production.router, prefix="/api/v1")
app.include_router(loads.router, prefix="/api/v1")
app.include_router(ddt.router, prefix="/api/v1")
app.include_router(dashboard.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Segheria Gestionale API",
        "version": "1.0.0",
        "docs": "/docs"
    }
