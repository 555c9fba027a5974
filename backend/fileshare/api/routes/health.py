import os
from datetime import datetime, timezone

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from fileshare.core.config import get_settings
from fileshare.db.session import engine
from fileshare.services.blob_store import get_blob_store

router = APIRouter(tags=["health"])

SERVICE = "fileshare-backend"


def _release() -> str | None:
    return os.getenv("RENDER_GIT_COMMIT") or os.getenv("GIT_SHA") or None


@router.get("/")
def root() -> dict:
    # Default platform health checks may hit "/" (GET/HEAD). Keep it cheap and 200.
    settings = get_settings()
    return {
        "status": "ok",
        "service": SERVICE,
        "environment": settings.environment,
        "release": _release(),
        "time": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health")
@router.get("/healthz")
def health() -> dict:
    settings = get_settings()
    return {
        "status": "ok",
        "service": SERVICE,
        "environment": settings.environment,
        "release": _release(),
        "time": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/readyz")
def readyz(response: Response) -> dict:
    """
    Readiness check: verifies DB connectivity and that the blob directory is writable.
    Returns 503 when not ready.
    """
    settings = get_settings()
    checks: dict[str, object] = {}
    ok = True

    try:
        with engine.connect() as conn:
            conn.execute(text("select 1"))
        checks["db"] = "ok"
    except SQLAlchemyError as e:
        ok = False
        checks["db"] = "error"
        checks["db_error"] = str(e)[:250]

    try:
        store = get_blob_store()
        writable = os.access(store.base_path, os.W_OK)
        checks["blob_store"] = "ok" if writable else "read_only"
        ok = ok and writable
    except OSError as e:
        ok = False
        checks["blob_store"] = "error"
        checks["blob_store_error"] = str(e)[:250]

    if not ok:
        response.status_code = 503
    return {
        "status": "ok" if ok else "not_ready",
        "service": SERVICE,
        "environment": settings.environment,
        "release": _release(),
        "checks": checks,
        "time": datetime.now(timezone.utc).isoformat(),
    }
