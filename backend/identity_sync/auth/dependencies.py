"""
FastAPI dependencies for authenticated routes.

Usage:
    @router.get("/me")
    def me(principal: Principal = Depends(get_current_principal)):
        ...
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from identity_sync.auth.clerk_verifier import ClerkJWTVerifier, Principal

logger = logging.getLogger(__name__)


def get_current_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Principal:
    """
    Resolve the calling principal from the Authorization header.

    Raises:
        HTTPException 503: Session verification is not configured
        HTTPException 401: Missing, malformed or invalid bearer token
    """
    verifier: Optional[ClerkJWTVerifier] = getattr(request.app.state, "jwt_verifier", None)
    if verifier is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication not configured",
        )

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
        )

    principal = verifier.verify_principal(authorization[7:])
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    return principal
