"""Admin console: login and delivery app variation management."""

import logging
import secrets

from fastapi import APIRouter, HTTPException, Query, Request, status

from storefront.core.config import settings
from storefront.core.rate_limit import client_ip, limiter
from storefront.core.rbac import RequireAdmin
from storefront.core.security import create_admin_token, verify_password
from storefront.db.session import DbSession
from storefront.schemas.app_variation import (
    AppVariationCreate,
    AppVariationList,
    AppVariationResponse,
    AppVariationUpdate,
)
from storefront.schemas.auth import LoginRequest, Token
from storefront.services.app_variation_service import (
    AppVariationNotFoundError,
    AppVariationService,
    AppVariationValidationError,
    DeleteNotConfirmedError,
    SlugGenerationError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _validation_error(e: AppVariationValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"message": "Invalid app configuration", "errors": e.errors},
    )


@router.post("/login", response_model=Token)
@limiter.limit("5/minute")
def login(request: Request, login_request: LoginRequest):
    """Authenticate the admin and return a JWT."""
    ip = client_ip(request)
    email_ok = secrets.compare_digest(
        login_request.email.strip().lower().encode("utf-8"),
        settings.admin_email.lower().encode("utf-8"),
    )
    password_ok = verify_password(login_request.password, settings.admin_password_hash)

    if not (email_ok and password_ok):
        logger.warning(f"Failed admin login attempt for email: {login_request.email} from IP: {ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info(f"Successful admin login: {settings.admin_email} from IP: {ip}")
    token = create_admin_token(settings.admin_email)
    return Token(access_token=token)


@router.get("/apps", response_model=AppVariationList)
def list_apps(db: DbSession, admin: RequireAdmin):
    apps = AppVariationService(db).list_apps()
    return AppVariationList(items=[AppVariationResponse.model_validate(app) for app in apps], total=len(apps))


@router.post("/apps", response_model=AppVariationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_app(request: Request, db: DbSession, admin: RequireAdmin, body: AppVariationCreate):
    try:
        app = AppVariationService(db).create(body)
    except AppVariationValidationError as e:
        raise _validation_error(e)
    except SlugGenerationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    logger.info(f"Admin {admin.email} created app {app.app_slug}")
    return app


@router.get("/apps/{slug}", response_model=AppVariationResponse)
def get_app(db: DbSession, admin: RequireAdmin, slug: str):
    try:
        return AppVariationService(db).get_by_slug(slug)
    except AppVariationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")


@router.patch("/apps/{slug}", response_model=AppVariationResponse)
@limiter.limit("30/minute")
def update_app(request: Request, db: DbSession, admin: RequireAdmin, slug: str, body: AppVariationUpdate):
    try:
        return AppVariationService(db).update(slug, body)
    except AppVariationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")
    except AppVariationValidationError as e:
        raise _validation_error(e)


@router.delete("/apps/{slug}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def delete_app(request: Request, db: DbSession, admin: RequireAdmin, slug: str, confirm: bool = Query(False)):
    """Permanently delete an app. Requires ``?confirm=true``."""
    try:
        AppVariationService(db).delete(slug, confirm=confirm)
    except DeleteNotConfirmedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AppVariationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")
    logger.info(f"Admin {admin.email} deleted app {slug}")
