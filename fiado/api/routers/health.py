from __future__ import annotations

import time
from typing import Any, Optional

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from fiado.infra.db import engine

router = APIRouter()


def _db_error(e: Exception) -> str:
    msg = str(e) or e.__class__.__name__
    # mensagem do driver pode trazer a DATABASE_URL
    if "postgres" in msg and "://" in msg:
        return "db_error"
    return msg[:300]


def check_database() -> Optional[str]:
    """None se o banco respondeu; senão a mensagem de erro já filtrada."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return _db_error(e)
    return None


@router.head("/health", include_in_schema=False)
def health_head() -> Response:
    return Response(status_code=200)


@router.get("/health")
def health() -> dict[str, Any]:
    started = time.perf_counter()
    error = check_database()
    return {
        "ok": error is None,
        "db": {"ok": error is None, "error": error},
        "elapsed_ms": int((time.perf_counter() - started) * 1000),
    }
