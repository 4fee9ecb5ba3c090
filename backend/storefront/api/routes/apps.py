"""Public delivery app configuration."""

from fastapi import APIRouter, HTTPException, Request, status

from storefront.core.rate_limit import limiter
from storefront.db.session import DbSession
from storefront.schemas.app_variation import ResolvedAppVariation
from storefront.services.app_variation_service import AppVariationNotFoundError, AppVariationService

router = APIRouter()


@router.get("/{slug}", response_model=ResolvedAppVariation)
@limiter.limit("60/minute")
def get_app_variation(request: Request, db: DbSession, slug: str):
    """Active app with every config block resolved against its defaults."""
    try:
        return AppVariationService(db).get_resolved(slug)
    except AppVariationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")
