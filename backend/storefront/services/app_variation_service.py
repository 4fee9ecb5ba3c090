"""Admin management of delivery app variations."""

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from storefront.models.app_variation import DeliveryAppVariation
from storefront.schemas.app_variation import (
    CURRENT_SCHEMA_VERSION,
    AppVariationCreate,
    AppVariationUpdate,
    CollectionsConfig,
    ResolvedAppVariation,
    resolve_config,
    valid_tabs,
    validate_config,
)

logger = logging.getLogger(__name__)

MAX_SLUG_ATTEMPTS = 100
CONFIG_FIELDS = {
    "start_screen": "start_screen_config",
    "main_app": "main_app_config",
    "post_checkout": "post_checkout_config",
}


class AppVariationNotFoundError(Exception):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"App variation '{slug}' not found")


class AppVariationValidationError(Exception):
    """Admin input rejected; ``errors`` maps field to message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class SlugGenerationError(Exception):
    pass


class DeleteNotConfirmedError(Exception):
    pass


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "app"


def _config_errors(kind: str, e: ValidationError) -> Dict[str, str]:
    """Field errors keyed ``<config field>.<path>``, without the union tag."""
    errors = {}
    for err in e.errors():
        loc = err["loc"][1:] if err["loc"][:1] == (kind,) else err["loc"]
        errors[".".join([CONFIG_FIELDS[kind], *(str(p) for p in loc)])] = err["msg"]
    return errors


class AppVariationService:
    def __init__(self, db: Session):
        self.db = db

    def _slug_taken(self, slug: str) -> bool:
        return self.db.query(DeliveryAppVariation.id).filter(
            DeliveryAppVariation.app_slug == slug
        ).first() is not None

    def generate_unique_slug(self, name: str) -> str:
        """Slug from the name; collisions get ``-1``, ``-2``, ... suffixes."""
        base = slugify(name)
        if not self._slug_taken(base):
            return base
        for n in range(1, MAX_SLUG_ATTEMPTS + 1):
            candidate = f"{base}-{n}"
            if not self._slug_taken(candidate):
                return candidate
        raise SlugGenerationError(f"Could not find a free slug for '{base}'")

    def list_apps(self) -> List[DeliveryAppVariation]:
        return self.db.query(DeliveryAppVariation).order_by(DeliveryAppVariation.created_at.desc()).all()

    def get_by_slug(self, slug: str) -> DeliveryAppVariation:
        app = self.db.query(DeliveryAppVariation).filter(DeliveryAppVariation.app_slug == slug).first()
        if app is None:
            raise AppVariationNotFoundError(slug)
        return app

    def _validated_configs(self, data: Dict[str, Optional[Dict[str, Any]]]) -> Dict[str, Optional[Dict[str, Any]]]:
        errors: Dict[str, str] = {}
        result = {}
        for kind, field in CONFIG_FIELDS.items():
            raw = data.get(field)
            if raw is None:
                continue
            try:
                result[field] = validate_config(kind, raw)
            except ValidationError as e:
                errors.update(_config_errors(kind, e))
        if errors:
            raise AppVariationValidationError(errors)
        return result

    @staticmethod
    def _collections(tabs: List[Dict[str, Any]]) -> Dict[str, Any]:
        kept = valid_tabs(tabs)
        if not kept:
            raise AppVariationValidationError({"tabs": "At least one valid tab is required"})
        return CollectionsConfig(tabs=kept).model_dump()

    def create(self, data: AppVariationCreate) -> DeliveryAppVariation:
        if not (data.app_name or "").strip():
            raise AppVariationValidationError({"app_name": "App name is required"})
        collections = self._collections(data.tabs)
        configs = self._validated_configs(data.model_dump())

        app = DeliveryAppVariation(
            app_name=data.app_name,
            app_slug=self.generate_unique_slug(data.app_name),
            is_active=data.is_active,
            schema_version=CURRENT_SCHEMA_VERSION,
            collections_config=collections,
            **configs,
        )
        self.db.add(app)
        self.db.commit()
        self.db.refresh(app)
        logger.info(f"Created app variation {app.app_slug} with {collections['tab_count']} tabs")
        return app

    def update(self, slug: str, data: AppVariationUpdate) -> DeliveryAppVariation:
        """Patch an app. Config blocks merge onto the stored ones; the slug never changes."""
        app = self.get_by_slug(slug)
        changes = data.model_dump(exclude_unset=True)

        if "app_name" in changes:
            if not (changes["app_name"] or "").strip():
                raise AppVariationValidationError({"app_name": "App name is required"})
            app.app_name = changes["app_name"]
        if changes.get("tabs") is not None:
            app.collections_config = self._collections(changes["tabs"])
        if changes.get("is_active") is not None:
            app.is_active = changes["is_active"]

        merged = {
            field: {**(getattr(app, field) or {}), **changes[field]}
            for field in CONFIG_FIELDS.values()
            if changes.get(field) is not None
        }
        for field, value in self._validated_configs(merged).items():
            setattr(app, field, value)
        app.schema_version = CURRENT_SCHEMA_VERSION

        self.db.commit()
        self.db.refresh(app)
        logger.info(f"Updated app variation {slug}: {sorted(changes)}")
        return app

    def delete(self, slug: str, confirm: bool = False) -> None:
        if not confirm:
            raise DeleteNotConfirmedError(f"Deleting '{slug}' requires confirmation")
        app = self.get_by_slug(slug)
        self.db.delete(app)
        self.db.commit()
        logger.info(f"Deleted app variation {slug}")

    def get_resolved(self, slug: str) -> ResolvedAppVariation:
        """Public view of an active app; inactive apps read as missing."""
        app = self.get_by_slug(slug)
        if not app.is_active:
            raise AppVariationNotFoundError(slug)

        try:
            collections = CollectionsConfig.model_validate(app.collections_config or {})
        except ValidationError:
            logger.warning(f"App {slug} has malformed collections config")
            collections = CollectionsConfig()

        blocks = {kind: resolve_config(kind, getattr(app, field)) for kind, field in CONFIG_FIELDS.items()}
        if not blocks["start_screen"].app_name:
            blocks["start_screen"] = blocks["start_screen"].model_copy(update={"app_name": app.app_name})

        return ResolvedAppVariation(
            app_name=app.app_name,
            app_slug=app.app_slug,
            collections_config=collections,
            **blocks,
        )
