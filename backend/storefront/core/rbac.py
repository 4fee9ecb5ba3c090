"""Admin access control for the configuration console."""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from storefront.core.security import ADMIN_ROLE, decode_token

ACCESS_TOKEN_COOKIE = "access_token"


@dataclass(frozen=True)
class AdminIdentity:
    email: str


def _bearer_token(request: Request) -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        return token
    return None


async def get_current_admin(request: Request) -> AdminIdentity:
    """Resolve the console admin from a bearer token, else the session cookie.

    A missing or invalid token is 401; a valid token without the admin
    role is 403.
    """
    claims = None
    for token in (_bearer_token(request), request.cookies.get(ACCESS_TOKEN_COOKIE)):
        if token:
            claims = decode_token(token)
            if claims is not None:
                break

    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if claims.get("role") != ADMIN_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")

    return AdminIdentity(email=claims["sub"])


RequireAdmin = Annotated[AdminIdentity, Depends(get_current_admin)]
