# newsagg/auth.py
"""Shared authentication dependencies."""

import secrets

from fastapi import Header, HTTPException, Request


def require_admin_key(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """Validate admin API key. Fails closed if no admin key is configured."""
    expected_key = getattr(request.app.state, "admin_api_key", None)

    if not expected_key:
        raise HTTPException(
            status_code=503,
            detail="Server misconfiguration: admin authentication not configured",
        )

    if not x_api_key or not secrets.compare_digest(x_api_key, expected_key):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
        )
