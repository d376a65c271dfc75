# main.py
# FastAPI entry point for the course feedback service (Supabase Auth + Postgres).

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from db import create_db_and_tables
from identity import close_identity_provider
from middleware.auth import role_guard_middleware
from middleware.error_handler import register_error_handlers
from migrations import migrate_database
from routes import admin, analytics, auth, feedback, profile, teacher

_BASE_DIR = Path(__file__).resolve().parent
load_dotenv(dotenv_path=_BASE_DIR / ".env")

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Course Feedback API",
    description="Student course feedback with role-based dashboards and analytics",
    version="1.0.0",
)

_default_allowed_origins = ["http://localhost:3000"]

_configured_origins = os.getenv("FRONTEND_ORIGINS")
if _configured_origins:
    parsed_origins = [origin.strip() for origin in _configured_origins.split(",") if origin.strip()]
    allow_origins = list(dict.fromkeys(parsed_origins + _default_allowed_origins))
else:
    allow_origins = _default_allowed_origins

# Session cookies ride along, so origins must be explicit.
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
app.middleware("http")(role_guard_middleware)

app.include_router(auth.router)
app.include_router(feedback.router)
app.include_router(teacher.router)
app.include_router(admin.router)
app.include_router(analytics.router)
app.include_router(profile.router)


@app.on_event("startup")
def init_database() -> None:
    """Ensure tables and the submission key exist before serving traffic."""
    create_db_and_tables()
    try:
        migrate_database()
    except SQLAlchemyError as exc:
        logger.warning("Unable to verify feedback_responses schema: %s", exc)


@app.on_event("shutdown")
def release_identity_provider() -> None:
    close_identity_provider()


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/")
def root():
    return {
        "status": "Backend Live!",
        "message": "Course Feedback API running.",
        "docs": "/docs",
    }
