"""White-labelled delivery app variations managed from the admin console."""

from sqlalchemy import Boolean, Column, Integer, JSON, String
from sqlalchemy.orm import validates

from storefront.db.base import Base, TimestampMixin
from storefront.models.validators import json_object


class DeliveryAppVariation(TimestampMixin, Base):
    """A storefront variation: its collection tabs, start screen, hero copy
    and post-checkout message, addressed publicly by ``app_slug``."""
    __tablename__ = "delivery_app_variations"

    id = Column(Integer, primary_key=True, index=True)
    app_name = Column(String(200), nullable=False)
    app_slug = Column(String(120), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    schema_version = Column(Integer, default=1, nullable=False)

    collections_config = Column(JSON, nullable=False)
    start_screen_config = Column(JSON, nullable=True)
    main_app_config = Column(JSON, nullable=True)
    post_checkout_config = Column(JSON, nullable=True)

    @validates('collections_config', 'start_screen_config', 'main_app_config', 'post_checkout_config')
    def _validate_configs(self, key, value):
        return json_object(key, value)
