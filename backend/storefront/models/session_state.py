"""Per-session shopper state (cart, checkout progress, last order memory)."""

from sqlalchemy import Column, DateTime, Integer, JSON, String, UniqueConstraint
from sqlalchemy.sql import func

from storefront.db.base import Base


class SessionStateEntry(Base):
    """
    One key/value entry of a shopper session.

    ``session_id`` namespaces the entries; ``key`` is one of the storage
    keys in ``storefront.services.state_store.StorageKey``.
    """
    __tablename__ = "session_state"
    __table_args__ = (
        UniqueConstraint("session_id", "key", name="uq_session_state_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), nullable=False, index=True)
    key = Column(String(64), nullable=False)
    value = Column(JSON, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
