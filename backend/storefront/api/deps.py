"""Shared route dependencies: shopper session resolution and service wiring."""

import re
import uuid
from typing import Annotated

from fastapi import Depends, Request, Response

from storefront.core.config import settings
from storefront.db.session import DbSession
from storefront.services.checkout_service import CheckoutService
from storefront.services.order_service import OrderService
from storefront.services.state_store import DatabaseStateStore

SESSION_HEADER = "X-Session-ID"
_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,128}$")


def get_session_id(request: Request, response: Response) -> str:
    """Session id from the ``X-Session-ID`` header or the session cookie.

    A missing or malformed id starts a new session and sets the cookie.
    """
    session_id = request.headers.get(SESSION_HEADER) or request.cookies.get(settings.session_cookie_name)
    if session_id and _SESSION_ID_PATTERN.match(session_id):
        return session_id

    session_id = uuid.uuid4().hex
    response.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=settings.session_state_ttl_days * 86400,
        httponly=True,
        samesite="lax",
        secure=not settings.debug,
    )
    return session_id


SessionId = Annotated[str, Depends(get_session_id)]


def get_state_store(db: DbSession, session_id: SessionId) -> DatabaseStateStore:
    return DatabaseStateStore(db, session_id, default_ttl_seconds=settings.session_state_ttl_days * 86400)


ShopperStore = Annotated[DatabaseStateStore, Depends(get_state_store)]


def get_checkout_service(db: DbSession, store: ShopperStore) -> CheckoutService:
    return CheckoutService(store, order_service=OrderService(db))


Checkout = Annotated[CheckoutService, Depends(get_checkout_service)]
