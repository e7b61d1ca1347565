"""
Health check endpoint.

Does not require authentication.
"""

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(request: Request):
    """Report process liveness and whether the store answers."""
    database_ok = False
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is not None:
        session = session_factory()
        try:
            session.execute(text("SELECT 1"))
            database_ok = True
        except Exception as e:
            logger.warning("Health check database probe failed", extra={"error": str(e)})
        finally:
            session.close()

    return {
        "status": "ok" if database_ok else "degraded",
        "database": "ok" if database_ok else "unavailable",
    }
