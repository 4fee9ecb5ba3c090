"""Delivery app variation schemas.

Each configuration block is a versioned model discriminated by ``kind``.
Stored blobs are resolved against these models with per-field default
fallback, so an old or partially malformed record still renders.
"""

import logging
import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from storefront.core.sanitize import sanitize_text

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 1
HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


def _check_color(v: Optional[str]) -> Optional[str]:
    if v is not None and not HEX_COLOR.match(v):
        raise ValueError(f"{v!r} is not a hex color")
    return v


def _check_url(v: Optional[str]) -> Optional[str]:
    if v and not (v.startswith("https://") or v.startswith("http://") or v.startswith("/")):
        raise ValueError("URL must be absolute (http/https) or site-relative")
    return v


# ==================== COLLECTION TABS ====================

class CollectionTab(BaseModel):
    name: str
    collection_handle: str
    icon: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)

    @field_validator("collection_handle")
    @classmethod
    def _handle(cls, v: str) -> str:
        return v.strip()


class CollectionsConfig(BaseModel):
    tab_count: int = 0
    tabs: List[CollectionTab] = Field(default_factory=list)

    @model_validator(mode="after")
    def _count(self) -> "CollectionsConfig":
        self.tab_count = len(self.tabs)
        return self


def valid_tabs(tabs: List[Dict[str, Any]]) -> List[CollectionTab]:
    """Tabs with both a name and a collection handle; incomplete rows are dropped."""
    result = []
    for tab in tabs or []:
        if (tab.get("name") or "").strip() and (tab.get("collection_handle") or "").strip():
            result.append(CollectionTab.model_validate(tab))
    return result


# ==================== CONFIG BLOCKS ====================

class StartScreenConfig(BaseModel):
    kind: Literal["start_screen"] = "start_screen"
    schema_version: int = CURRENT_SCHEMA_VERSION
    enabled: bool = False
    app_name: str = ""
    custom_title: Optional[str] = None
    custom_subtitle: Optional[str] = None
    start_button_text: str = "Start Order Now"
    search_button_text: str = "Search Products"
    home_button_text: str = "Back to Home"
    background_color: str = "#ffffff"
    primary_color: str = "#1f2937"
    text_color: str = "#111827"
    logo_url: Optional[str] = None
    custom_styles: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("background_color", "primary_color", "text_color")
    @classmethod
    def _colors(cls, v):
        return _check_color(v)

    @field_validator("logo_url")
    @classmethod
    def _urls(cls, v):
        return _check_url(v)


class MainAppConfig(BaseModel):
    kind: Literal["main_app"] = "main_app"
    schema_version: int = CURRENT_SCHEMA_VERSION
    hero_heading: str = "Premium Alcohol Delivery"
    hero_subheading: Optional[str] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None

    @field_validator("logo_url")
    @classmethod
    def _urls(cls, v):
        return _check_url(v)


class PostCheckoutConfig(BaseModel):
    kind: Literal["post_checkout"] = "post_checkout"
    schema_version: int = CURRENT_SCHEMA_VERSION
    enabled: bool = False
    title: str = "Thank you for your order!"
    message: str = "Your order is confirmed and will be delivered at your selected time."
    cta_button_text: str = "Continue Shopping"
    cta_button_url: str = "/"
    background_color: str = "#ffffff"
    text_color: str = "#111827"

    @field_validator("background_color", "text_color")
    @classmethod
    def _colors(cls, v):
        return _check_color(v)

    @field_validator("cta_button_url")
    @classmethod
    def _urls(cls, v):
        return _check_url(v)


ConfigBlock = Annotated[
    Union[StartScreenConfig, MainAppConfig, PostCheckoutConfig],
    Field(discriminator="kind"),
]

CONFIG_BLOCK = TypeAdapter(ConfigBlock)

CONFIG_MODELS = {
    "start_screen": StartScreenConfig,
    "main_app": MainAppConfig,
    "post_checkout": PostCheckoutConfig,
}


def resolve_config(kind: str, raw: Optional[Dict[str, Any]]):
    """Resolve a stored blob to its model, falling back to defaults field by field."""
    model = CONFIG_MODELS[kind]
    if not raw or not isinstance(raw, dict):
        return model()

    data = {k: v for k, v in raw.items() if k != "kind"}
    try:
        return CONFIG_BLOCK.validate_python({**data, "kind": kind})
    except ValidationError as e:
        logger.warning(f"Malformed {kind} config, falling back to defaults for invalid fields: {e.error_count()} errors")

    resolved = model().model_dump()
    for key, value in data.items():
        if key not in model.model_fields:
            continue
        try:
            model.model_validate({**resolved, key: value})
        except ValidationError:
            continue
        resolved[key] = value
    return model.model_validate(resolved)


def validate_config(kind: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Strict validation for admin writes. Raises ValidationError."""
    data = {k: v for k, v in raw.items() if k != "kind"}
    return CONFIG_BLOCK.validate_python({**data, "kind": kind}).model_dump(exclude={"kind"})


# ==================== API SCHEMAS ====================

class AppVariationCreate(BaseModel):
    app_name: str
    tabs: List[Dict[str, Any]] = Field(default_factory=list)
    is_active: bool = True
    start_screen_config: Optional[Dict[str, Any]] = None
    main_app_config: Optional[Dict[str, Any]] = None
    post_checkout_config: Optional[Dict[str, Any]] = None

    @field_validator("app_name", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class AppVariationUpdate(BaseModel):
    app_name: Optional[str] = None
    tabs: Optional[List[Dict[str, Any]]] = None
    is_active: Optional[bool] = None
    start_screen_config: Optional[Dict[str, Any]] = None
    main_app_config: Optional[Dict[str, Any]] = None
    post_checkout_config: Optional[Dict[str, Any]] = None

    @field_validator("app_name", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class AppVariationResponse(BaseModel):
    id: int
    app_name: str
    app_slug: str
    is_active: bool
    schema_version: int
    collections_config: CollectionsConfig
    start_screen_config: Optional[Dict[str, Any]] = None
    main_app_config: Optional[Dict[str, Any]] = None
    post_checkout_config: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AppVariationList(BaseModel):
    items: List[AppVariationResponse]
    total: int


class ResolvedAppVariation(BaseModel):
    """Public view of an active app with every block resolved."""
    app_name: str
    app_slug: str
    collections_config: CollectionsConfig
    start_screen: StartScreenConfig
    main_app: MainAppConfig
    post_checkout: PostCheckoutConfig
