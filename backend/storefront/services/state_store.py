"""
Shopper State Store

Explicit per-session state container with pluggable persistence. The cart,
checkout progress, last order memory, discount and group-order flags all
live here under well-known keys.

Adapters:
- DatabaseStateStore: rows in ``session_state``, namespaced by session id
- InMemoryStateStore: plain dict, used by tests and scripts
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from storefront.models.session_state import SessionStateEntry

logger = logging.getLogger(__name__)


class StorageKey:
    """Keys persisted for a shopper session."""

    DELIVERY_INFO = "delivery_info"
    LAST_ORDER = "last_order"
    APPLIED_DISCOUNT = "applied_discount"
    ADD_TO_ORDER = "add_to_order"
    BUNDLE_READY = "bundle_ready"
    CART = "cart"
    CUSTOMER = "customer"
    ADDRESS = "address"
    CHECKOUT_STATE = "checkout_state"
    DELIVERY_QUOTE = "delivery_quote"
    TIP = "tip"
    PAYMENT_PROCESSING = "payment_processing"
    PAYMENT_ATTEMPT = "payment_attempt"

    GROUP_ORDER_TOKEN = "group_order_token"
    GROUP_ORDER_DELIVERY_INFO = "group_order_delivery_info"
    ORIGINAL_GROUP_DATA = "original_group_data"
    GROUP_ORDER_JOIN_DECISION = "group_order_join_decision"

    GROUP_KEYS = (
        GROUP_ORDER_TOKEN,
        GROUP_ORDER_DELIVERY_INFO,
        ORIGINAL_GROUP_DATA,
        GROUP_ORDER_JOIN_DECISION,
    )


def utcnow() -> datetime:
    """Naive UTC now, matching how expiry columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StateStore(ABC):
    """Persistence adapter for one shopper session."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or ``default`` when absent or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store a JSON-compatible value, replacing any previous one."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if something was removed."""

    @abstractmethod
    def get_all(self) -> Dict[str, Any]:
        """All live values of the session."""

    def clear(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.delete(key)


class InMemoryStateStore(StateStore):
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self._expiry: Dict[str, datetime] = {}

    def _expired(self, key: str) -> bool:
        expires_at = self._expiry.get(key)
        return expires_at is not None and expires_at <= utcnow()

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._values or self._expired(key):
            return default
        return copy.deepcopy(self._values[key])

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        self._values[key] = copy.deepcopy(value)
        if ttl_seconds:
            self._expiry[key] = utcnow() + timedelta(seconds=ttl_seconds)
        else:
            self._expiry.pop(key, None)

    def delete(self, key: str) -> bool:
        self._expiry.pop(key, None)
        return self._values.pop(key, None) is not None

    def get_all(self) -> Dict[str, Any]:
        return {k: copy.deepcopy(v) for k, v in self._values.items() if not self._expired(k)}


class DatabaseStateStore(StateStore):
    """
    Session state persisted in the ``session_state`` table.

    Each ``set`` commits immediately; concurrent writers to the same key
    resolve as last write wins.
    """

    def __init__(self, db: Session, session_id: str, default_ttl_seconds: Optional[int] = None):
        self.db = db
        self.session_id = session_id
        self.default_ttl_seconds = default_ttl_seconds

    def _entry(self, key: str) -> Optional[SessionStateEntry]:
        return self.db.query(SessionStateEntry).filter(
            SessionStateEntry.session_id == self.session_id,
            SessionStateEntry.key == key,
        ).first()

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entry(key)
        if not entry:
            return default

        if entry.expires_at and entry.expires_at <= utcnow():
            self.db.delete(entry)
            self.db.commit()
            return default

        return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl_seconds = ttl_seconds or self.default_ttl_seconds
        expires_at = utcnow() + timedelta(seconds=ttl_seconds) if ttl_seconds else None

        entry = self._entry(key)
        if entry:
            entry.value = value
            entry.expires_at = expires_at
        else:
            self.db.add(SessionStateEntry(
                session_id=self.session_id,
                key=key,
                value=value,
                expires_at=expires_at,
            ))
        self.db.commit()

    def delete(self, key: str) -> bool:
        deleted = self.db.query(SessionStateEntry).filter(
            SessionStateEntry.session_id == self.session_id,
            SessionStateEntry.key == key,
        ).delete()
        self.db.commit()
        return deleted > 0

    def get_all(self) -> Dict[str, Any]:
        entries = self.db.query(SessionStateEntry).filter(
            SessionStateEntry.session_id == self.session_id,
        ).all()
        now = utcnow()
        return {
            entry.key: copy.deepcopy(entry.value)
            for entry in entries
            if not (entry.expires_at and entry.expires_at <= now)
        }

    def clear(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        self.db.query(SessionStateEntry).filter(
            SessionStateEntry.session_id == self.session_id,
            SessionStateEntry.key.in_(keys),
        ).delete(synchronize_session=False)
        self.db.commit()


def cleanup_expired_state(db: Session) -> int:
    """Delete expired session entries across all sessions. Returns count deleted."""
    deleted = db.query(SessionStateEntry).filter(
        SessionStateEntry.expires_at <= utcnow()
    ).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"Session state cleanup removed {deleted} expired entries")
    return deleted
