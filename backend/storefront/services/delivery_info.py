"""Delivery scheduling helpers and last-order memory.

A delivery is scheduled as a calendar date plus a two-hour slot label such
as ``"10:00 AM - 12:00 PM"``. The last completed order is remembered for
30 days so the shopper can add to it; it stops being offered once its
delivery window has started.
"""

import logging
import re
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional

from storefront.core.config import settings
from storefront.services.state_store import utcnow

logger = logging.getLogger(__name__)

TIME_SLOTS = (
    "10:00 AM - 12:00 PM",
    "12:00 PM - 2:00 PM",
    "2:00 PM - 4:00 PM",
    "4:00 PM - 6:00 PM",
    "6:00 PM - 8:00 PM",
)

_SLOT_PATTERN = re.compile(
    r"^\s*(\d{1,2}):(\d{2})\s*(AM|PM)\s*-\s*(\d{1,2}):(\d{2})\s*(AM|PM)\s*$",
    re.IGNORECASE,
)


def _to_24h(hour: int, minute: int, meridiem: str) -> time:
    if not (1 <= hour <= 12 and 0 <= minute < 60):
        raise ValueError(f"Invalid clock time {hour}:{minute:02d} {meridiem}")
    meridiem = meridiem.upper()
    if meridiem == "PM" and hour != 12:
        hour += 12
    elif meridiem == "AM" and hour == 12:
        hour = 0
    return time(hour, minute)


def parse_time_slot(slot: str) -> time:
    """Start time of a slot label. Raises ValueError when malformed."""
    match = _SLOT_PATTERN.match(slot or "")
    if not match:
        raise ValueError(f"Invalid time slot: {slot!r}")
    start = _to_24h(int(match.group(1)), int(match.group(2)), match.group(3))
    end = _to_24h(int(match.group(4)), int(match.group(5)), match.group(6))
    if end <= start:
        raise ValueError(f"Time slot must end after it starts: {slot!r}")
    return start


def delivery_start(delivery_date: date, slot: str) -> datetime:
    return datetime.combine(delivery_date, parse_time_slot(slot))


def format_address(address: Optional[Dict[str, Any]]) -> str:
    """``street, city, state zip`` as shown to shoppers and compared for bundling."""
    if not address:
        return ""
    return (
        f"{address.get('street', '')}, {address.get('city', '')}, "
        f"{address.get('state', '')} {address.get('zip_code', '')}"
    ).strip()


@dataclass
class LastOrderInfo:
    """What the storefront remembers about the shopper's previous order."""
    order_number: str
    total: str
    date: str
    address: str
    delivery_date: str
    delivery_time: str
    expires_at: str
    instructions: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    address_info: Optional[Dict[str, Any]] = None
    share_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LastOrderInfo":
        known = {k: data.get(k) for k in cls.__dataclass_fields__}
        return cls(**known)


def build_last_order(order, now: Optional[datetime] = None) -> LastOrderInfo:
    """Snapshot a stored order for the add-to-order flow."""
    now = now or utcnow()
    return LastOrderInfo(
        order_number=order.order_number,
        total=f"{order.total:.2f}",
        date=now.isoformat(),
        address=format_address(order.delivery_address),
        address_info=dict(order.delivery_address or {}),
        delivery_date=order.delivery_date.isoformat(),
        delivery_time=order.delivery_time,
        instructions=order.delivery_instructions,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        share_token=order.share_token,
        expires_at=(now + timedelta(days=settings.last_order_ttl_days)).isoformat(),
    )


def is_last_order_valid(info: Optional[LastOrderInfo], now: Optional[datetime] = None) -> bool:
    """A remembered order can be added to until its expiry and its delivery window start.

    Anything unparseable counts as expired.
    """
    if info is None:
        return False
    now = now or datetime.now()
    try:
        if datetime.fromisoformat(info.expires_at) <= utcnow():
            return False
        start = delivery_start(date.fromisoformat(info.delivery_date), info.delivery_time)
    except (TypeError, ValueError) as e:
        logger.debug(f"Treating last order {info.order_number} as expired: {e}")
        return False
    return now <= start
