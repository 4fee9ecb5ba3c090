"""Shared group order links."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from storefront.api.deps import ShopperStore
from storefront.core.rate_limit import limiter
from storefront.db.session import DbSession
from storefront.schemas.group_order import GroupOrderJoin, GroupOrderResponse
from storefront.services.group_order_service import GroupOrderNotFoundError, GroupOrderService

logger = logging.getLogger(__name__)

router = APIRouter()

NOT_FOUND_DETAIL = "This group order link is no longer active. You can still place your own order."


def _details_response(details) -> GroupOrderResponse:
    return GroupOrderResponse.model_validate(details, from_attributes=True)


@router.post("/decline", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def decline_group_order(request: Request, db: DbSession, store: ShopperStore):
    GroupOrderService(db, store).decline()


@router.get("/{share_token}", response_model=GroupOrderResponse)
@limiter.limit("60/minute")
def get_group_order(request: Request, db: DbSession, store: ShopperStore, share_token: str):
    try:
        details = GroupOrderService(db, store).resolve(share_token)
    except GroupOrderNotFoundError as e:
        logger.info(f"Group order lookup declined: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    return _details_response(details)


@router.post("/{share_token}/join", response_model=GroupOrderResponse)
@limiter.limit("20/minute")
def join_group_order(request: Request, db: DbSession, store: ShopperStore, share_token: str, body: GroupOrderJoin):
    """Join a shared order; delivery details are copied and shipping is free."""
    try:
        details = GroupOrderService(db, store).join(share_token, body.email, body.name)
    except GroupOrderNotFoundError as e:
        logger.info(f"Group order join declined: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    return _details_response(details)
