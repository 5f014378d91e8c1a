"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

Clients send "Authorization: Bearer <access token>". The token is verified
with TokenManager.verify_access(); the three failure kinds map to distinct
error codes so clients can tell "log in again" (token_expired) from "this
request is bad" (token_invalid / token_malformed).

get_current_claims() raises HTTP 401 if unauthenticated.
require_role() builds a dependency that also raises HTTP 403 on the wrong role.

Authorization decisions are made on verified claims only. Nothing here calls
TokenManager.peek().

Layer rule: may import from fastapi because this module is part of the FastAPI
dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.errors import IdentityError
from auth.models import Claims, Role
from auth.service import IdentityService


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_claims(request: Request) -> Claims:
    """Require a valid access token. Raises HTTP 401 with the specific token failure code.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: Claims = Depends(get_current_claims)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    service: IdentityService = request.app.state.identity
    try:
        return service.tokens.verify_access(token)
    except IdentityError as exc:
        raise HTTPException(status_code=401, detail=exc.to_dict()) from None


def require_role(*roles: Role) -> Callable[[Request], Claims]:
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(claims: Claims = Depends(require_role(Role.ADMIN))): ...
    """
    allowed = {r.value for r in roles}

    def dependency(request: Request) -> Claims:
        claims = get_current_claims(request)
        if claims.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient role."},
            )
        return claims

    return dependency
