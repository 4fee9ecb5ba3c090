"""
Checkout Orchestrator

Sequences a shopper through date/time → address → contact → payment.
Progress is an explicit ``CheckoutState`` (current step plus the set of
confirmed steps) moved only by the transition functions below, and is
persisted in the session state store along with the order info snapshot.

Pricing is recomputed from the cart on every read; payment goes through
Stripe and a paid intent becomes a ``StorefrontOrder``.
"""

import hashlib
import json
import logging
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from storefront.services.cart_service import CartService
from storefront.services.delivery_info import (
    LastOrderInfo,
    TIME_SLOTS,
    build_last_order,
    format_address,
    is_last_order_valid,
    parse_time_slot,
)
from storefront.services.distance_service import DistanceService
from storefront.services.order_service import OrderService
from storefront.services.pricing_service import (
    AppliedDiscount,
    DEFAULT_TIP_PERCENTAGE,
    DeliveryQuote,
    PricingBreakdown,
    PricingCalculator,
    SYNTHETIC_DISCOUNT_CODES,
    quantize_money,
    to_cents,
    validate_discount_code,
)
from storefront.services.state_store import StateStore, StorageKey
from storefront.services.stripe_service import (
    AMOUNT_TOLERANCE_CENTS,
    PaymentAmountMismatchError,
    PaymentError,
    PaymentIntentResult,
    PaymentRequest,
    StripePaymentService,
    build_payment_request,
    get_stripe_service,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PAYMENT_PROCESSING_TTL_SECONDS = 120
ADDRESS_FIELDS = (
    ("street", "street address"),
    ("city", "city"),
    ("state", "state"),
    ("zip_code", "ZIP code"),
)


# ==================== ERRORS ====================

class CheckoutValidationError(Exception):
    """One or more checkout fields are missing or malformed.

    ``errors`` maps field name → user-facing message.
    """

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(errors.values()))


class EmptyCartError(Exception):
    def __init__(self):
        super().__init__("Your cart is empty")


class PaymentInProgressError(Exception):
    def __init__(self):
        super().__init__("A payment is already being processed")


class NoPreviousOrderError(Exception):
    def __init__(self):
        super().__init__("No recent order to add to")


class OrderNotFoundError(Exception):
    """No order for this payment intent belongs to the shopper's session."""

    def __init__(self, payment_intent_id: str):
        self.payment_intent_id = payment_intent_id
        super().__init__("Order not found")


# ==================== STATE MACHINE ====================

class CheckoutStep(str, Enum):
    CART_EMPTY = "cart_empty"
    DATETIME = "datetime"
    ADDRESS = "address"
    CUSTOMER = "customer"
    PAYMENT = "payment"


PRE_PAYMENT_STEPS = (CheckoutStep.DATETIME, CheckoutStep.ADDRESS, CheckoutStep.CUSTOMER)


@dataclass(frozen=True)
class CheckoutState:
    step: CheckoutStep = CheckoutStep.DATETIME
    confirmed: FrozenSet[CheckoutStep] = frozenset()

    @property
    def ready_for_payment(self) -> bool:
        return all(s in self.confirmed for s in PRE_PAYMENT_STEPS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step.value,
            "confirmed": [s.value for s in PRE_PAYMENT_STEPS if s in self.confirmed],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CheckoutState":
        if not data:
            return cls()
        return cls(
            step=CheckoutStep(data.get("step", CheckoutStep.DATETIME.value)),
            confirmed=frozenset(CheckoutStep(s) for s in data.get("confirmed", [])),
        )


def next_step(confirmed: FrozenSet[CheckoutStep]) -> CheckoutStep:
    """First unconfirmed pre-payment step, or payment when all are confirmed."""
    for step in PRE_PAYMENT_STEPS:
        if step not in confirmed:
            return step
    return CheckoutStep.PAYMENT


def confirm(state: CheckoutState, step: CheckoutStep) -> CheckoutState:
    if step not in PRE_PAYMENT_STEPS:
        raise ValueError(f"Step {step.value} cannot be confirmed")
    confirmed = state.confirmed | {step}
    return CheckoutState(step=next_step(confirmed), confirmed=confirmed)


def edit(state: CheckoutState, step: CheckoutStep) -> CheckoutState:
    """Reopen a step; other steps keep their confirmation."""
    if step not in PRE_PAYMENT_STEPS:
        raise ValueError(f"Step {step.value} cannot be edited")
    return CheckoutState(step=step, confirmed=state.confirmed - {step})


def guard_cart(state: CheckoutState, cart_is_empty: bool) -> CheckoutState:
    if cart_is_empty:
        return CheckoutState(step=CheckoutStep.CART_EMPTY, confirmed=state.confirmed)
    if state.step == CheckoutStep.CART_EMPTY:
        return CheckoutState(step=next_step(state.confirmed), confirmed=state.confirmed)
    return state


# ==================== VALIDATION ====================

def validate_email(email: Optional[str]) -> Optional[str]:
    if not email or not email.strip():
        return "Email is required"
    if not EMAIL_PATTERN.match(email.strip()):
        return "Please enter a valid email address"
    return None


def validate_phone(phone: Optional[str]) -> Optional[str]:
    if not phone or not phone.strip():
        return "Phone number is required"
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10 or (len(digits) == 11 and digits.startswith("1")):
        return None
    return "Please enter a valid 10-digit US phone number"


def validate_customer(customer: Dict[str, Any]) -> None:
    errors = {}
    if not (customer.get("first_name") or "").strip():
        errors["first_name"] = "First name is required"
    if not (customer.get("last_name") or "").strip():
        errors["last_name"] = "Last name is required"
    email_error = validate_email(customer.get("email"))
    if email_error:
        errors["email"] = email_error
    phone_error = validate_phone(customer.get("phone"))
    if phone_error:
        errors["phone"] = phone_error
    if errors:
        raise CheckoutValidationError(errors)


def validate_address(address: Dict[str, Any]) -> None:
    missing = [label for key, label in ADDRESS_FIELDS if not (address.get(key) or "").strip()]
    if missing:
        raise CheckoutValidationError({
            "address": f"Please complete the following fields: {', '.join(missing)}",
        })


def validate_delivery_slot(delivery_date: Optional[date], time_slot: Optional[str], today: date) -> None:
    errors = {}
    if delivery_date is None:
        errors["date"] = "Please select a delivery date"
    elif delivery_date < today:
        errors["date"] = "Delivery date cannot be in the past"
    if not time_slot:
        errors["time_slot"] = "Please select a delivery time"
    else:
        try:
            parse_time_slot(time_slot)
        except ValueError:
            errors["time_slot"] = "Please select a valid delivery time"
    if errors:
        raise CheckoutValidationError(errors)


# ==================== RESULTS ====================

@dataclass
class OrderChanges:
    has_changes: bool = False
    changed_fields: List[str] = field(default_factory=list)


@dataclass
class CheckoutView:
    state: CheckoutState
    delivery_info: Dict[str, Any]
    customer: Dict[str, Any]
    address: Dict[str, Any]
    is_adding_to_order: bool
    changes: OrderChanges
    time_slots: tuple = TIME_SLOTS


@dataclass
class CheckoutResult:
    """Outcome of a payment submission."""
    status: str
    payment_intent_id: str
    client_secret: Optional[str] = None
    order: Any = None
    created: bool = False


# ==================== SERVICE ====================

class CheckoutService:
    """Checkout for one shopper session."""

    def __init__(
        self,
        store: StateStore,
        order_service: Optional[OrderService] = None,
        calculator: Optional[PricingCalculator] = None,
        distance_service: Optional[DistanceService] = None,
        payment_service: Optional[StripePaymentService] = None,
    ):
        self.store = store
        self.cart = CartService(store)
        self.order_service = order_service
        self.calculator = calculator or PricingCalculator()
        self.distance_service = distance_service or DistanceService()
        self.payment_service = payment_service or get_stripe_service()

    # ---- persisted pieces ----

    @property
    def state(self) -> CheckoutState:
        return guard_cart(
            CheckoutState.from_dict(self.store.get(StorageKey.CHECKOUT_STATE)),
            self.cart.is_empty(),
        )

    def _save_state(self, state: CheckoutState) -> CheckoutState:
        self.store.set(StorageKey.CHECKOUT_STATE, state.to_dict())
        return state

    def delivery_info(self) -> Dict[str, Any]:
        return self.store.get(StorageKey.DELIVERY_INFO) or {}

    def customer(self) -> Dict[str, Any]:
        return self.store.get(StorageKey.CUSTOMER) or {}

    def address(self) -> Dict[str, Any]:
        return self.store.get(StorageKey.ADDRESS) or {}

    def _merge(self, key: str, values: Dict[str, Any]) -> Dict[str, Any]:
        merged = {**(self.store.get(key) or {}), **values}
        self.store.set(key, merged)
        return merged

    def last_order(self) -> Optional[LastOrderInfo]:
        raw = self.store.get(StorageKey.LAST_ORDER)
        info = LastOrderInfo.from_dict(raw) if raw else None
        return info if is_last_order_valid(info) else None

    def group_order_token(self) -> Optional[str]:
        return self.store.get(StorageKey.GROUP_ORDER_TOKEN)

    def is_adding_to_order(self) -> bool:
        if not self.store.get(StorageKey.ADD_TO_ORDER):
            return False
        return self._reference_order() is not None

    def _reference_order(self) -> Optional[Dict[str, Any]]:
        """Delivery details that the current selection is compared with."""
        group_info = self.store.get(StorageKey.GROUP_ORDER_DELIVERY_INFO)
        if self.group_order_token() and group_info:
            return {
                "date": group_info.get("date"),
                "time_slot": group_info.get("timeSlot"),
                "address": group_info.get("address"),
            }
        last = self.last_order()
        if last:
            return {"date": last.delivery_date, "time_slot": last.delivery_time, "address": last.address}
        return None

    # ---- previous order continuation ----

    def continue_previous_order(self) -> LastOrderInfo:
        """Add to the remembered order: same date, time and address, delivery free."""
        last = self.last_order()
        if last is None:
            raise NoPreviousOrderError()
        self.store.set(StorageKey.ADD_TO_ORDER, True)
        self.store.set(StorageKey.BUNDLE_READY, True)
        self._merge(StorageKey.DELIVERY_INFO, {
            "date": last.delivery_date,
            "time_slot": last.delivery_time,
            "address": last.address,
            "instructions": last.instructions or "",
        })
        if last.address_info:
            self.store.set(StorageKey.ADDRESS, last.address_info)
        logger.info(f"Continuing previous order {last.order_number}")
        return last

    def start_new_order(self) -> None:
        """Leave the add-to-order and group flows; a user-entered code stays applied."""
        keys = [StorageKey.ADD_TO_ORDER, StorageKey.BUNDLE_READY, *StorageKey.GROUP_KEYS]
        if is_synthetic_discount(self.applied_discount()):
            keys.append(StorageKey.APPLIED_DISCOUNT)
        self.store.clear(keys)

    def _require_items(self) -> None:
        if self.cart.is_empty():
            self._save_state(guard_cart(self.state, True))
            raise EmptyCartError()

    # ---- steps ----

    def start(self, today: Optional[date] = None) -> CheckoutView:
        """Begin checkout at the date/time step, prefilling what is known."""
        self._require_items()
        today = today or date.today()
        delivery = self.delivery_info()
        current_date = _parse_date(delivery.get("date"))

        reference = self._reference_order() if self.store.get(StorageKey.ADD_TO_ORDER) else None
        if reference:
            delivery = self._merge(StorageKey.DELIVERY_INFO, {
                "date": reference["date"],
                "time_slot": reference["time_slot"],
                "address": reference["address"],
            })
        elif current_date is None or current_date < today:
            delivery = self._merge(StorageKey.DELIVERY_INFO, {"date": today.isoformat()})

        address = self.address()
        if address and not delivery.get("address"):
            self._merge(StorageKey.DELIVERY_INFO, {
                "address": format_address(address),
                "instructions": address.get("instructions") or "",
            })

        self._save_state(CheckoutState())
        return self.view()

    def confirm_datetime(self, delivery_date: date, time_slot: str, today: Optional[date] = None) -> CheckoutState:
        self._require_items()
        validate_delivery_slot(delivery_date, time_slot, today or date.today())
        self._merge(StorageKey.DELIVERY_INFO, {
            "date": delivery_date.isoformat(),
            "time_slot": time_slot,
        })
        return self._save_state(confirm(self.state, CheckoutStep.DATETIME))

    async def confirm_address(self, address: Dict[str, Any]) -> CheckoutState:
        """Validate the address, store it and resolve its delivery quote."""
        self._require_items()
        validate_address(address)
        address = {
            "street": address["street"].strip(),
            "city": address["city"].strip(),
            "state": address["state"].strip(),
            "zip_code": address["zip_code"].strip(),
            "instructions": (address.get("instructions") or "").strip(),
        }
        self.store.set(StorageKey.ADDRESS, address)
        full_address = format_address(address)
        self._merge(StorageKey.DELIVERY_INFO, {
            "address": full_address,
            "instructions": address["instructions"],
        })

        quote = await self.distance_service.quote(full_address, self.cart.get_total_price(), self.calculator)
        self.store.set(StorageKey.DELIVERY_QUOTE, quote.to_dict())
        return self._save_state(confirm(self.state, CheckoutStep.ADDRESS))

    def confirm_customer(self, customer: Dict[str, Any]) -> CheckoutState:
        self._require_items()
        validate_customer(customer)
        self.store.set(StorageKey.CUSTOMER, {
            "first_name": customer["first_name"].strip(),
            "last_name": customer["last_name"].strip(),
            "email": customer["email"].strip(),
            "phone": customer["phone"].strip(),
        })
        return self._save_state(confirm(self.state, CheckoutStep.CUSTOMER))

    def edit_step(self, step: CheckoutStep) -> CheckoutState:
        return self._save_state(edit(self.state, step))

    def compute_changes(self) -> OrderChanges:
        """Fields that differ from the order being added to."""
        if not self.is_adding_to_order():
            return OrderChanges()
        reference = self._reference_order()
        delivery = self.delivery_info()
        address = self.address()
        changes = []

        if address.get("street") and format_address(address) != reference.get("address"):
            changes.append("delivery address")

        current_date = _parse_date(delivery.get("date"))
        original_date = _parse_date(reference.get("date"))
        if current_date and original_date and current_date != original_date:
            changes.append("delivery date")

        if delivery.get("time_slot") and reference.get("time_slot") \
                and delivery["time_slot"] != reference["time_slot"]:
            changes.append("delivery time")

        return OrderChanges(has_changes=bool(changes), changed_fields=changes)

    def view(self) -> CheckoutView:
        state = self.state
        return CheckoutView(
            state=state,
            delivery_info=self.delivery_info(),
            customer=self.customer(),
            address=self.address(),
            is_adding_to_order=self.is_adding_to_order(),
            changes=self.compute_changes(),
        )

    # ---- pricing ----

    def applied_discount(self) -> Optional[AppliedDiscount]:
        return AppliedDiscount.from_dict(self.store.get(StorageKey.APPLIED_DISCOUNT))

    def apply_discount(self, code: str) -> AppliedDiscount:
        discount = validate_discount_code(code)
        self.store.set(StorageKey.APPLIED_DISCOUNT, discount.to_dict())
        logger.info(f"Discount {discount.code} applied")
        return discount

    def remove_discount(self) -> None:
        self.store.delete(StorageKey.APPLIED_DISCOUNT)

    def set_tip(self, amount: Optional[Decimal] = None, percentage: Optional[int] = None) -> Decimal:
        """Set a fixed tip or a percentage of the subtotal (re-evaluated as the cart changes)."""
        if amount is not None:
            if amount < 0:
                raise CheckoutValidationError({"tip": "Tip cannot be negative"})
            self.store.set(StorageKey.TIP, {"amount": str(quantize_money(amount))})
        elif percentage is not None:
            if percentage < 0:
                raise CheckoutValidationError({"tip": "Tip cannot be negative"})
            self.store.set(StorageKey.TIP, {"percentage": percentage})
        else:
            self.store.delete(StorageKey.TIP)
        return self.tip_amount()

    def tip_amount(self) -> Decimal:
        tip = self.store.get(StorageKey.TIP) or {}
        if "amount" in tip:
            return Decimal(tip["amount"])
        percentage = tip.get("percentage", DEFAULT_TIP_PERCENTAGE)
        return self.calculator.tip_for_percentage(self.cart.get_total_price(), percentage)

    def delivery_quote(self) -> DeliveryQuote:
        raw = self.store.get(StorageKey.DELIVERY_QUOTE)
        return DeliveryQuote.from_dict(raw) if raw else self.calculator.standard_quote()

    def get_pricing(self) -> PricingBreakdown:
        changes = self.compute_changes()
        return self.calculator.calculate(
            subtotal=self.cart.get_total_price(),
            quote=self.delivery_quote(),
            is_adding_to_order=self.is_adding_to_order(),
            has_changes=changes.has_changes,
            applied_discount=self.applied_discount(),
            tip=self.tip_amount(),
        )

    # ---- payment ----

    @contextmanager
    def _processing(self):
        """Single in-flight payment guard, always released on exit."""
        if self.store.get(StorageKey.PAYMENT_PROCESSING):
            raise PaymentInProgressError()
        self.store.set(StorageKey.PAYMENT_PROCESSING, True, ttl_seconds=PAYMENT_PROCESSING_TTL_SECONDS)
        try:
            yield
        finally:
            self.store.delete(StorageKey.PAYMENT_PROCESSING)

    def _idempotency_key(self, request: PaymentRequest, payment_method_id: Optional[str] = None) -> str:
        """Stripe idempotency key for this attempt, cart snapshot and amount.

        Resubmitting the same cart replays the first intent instead of
        charging twice. The attempt id is dropped after a decline or a
        completed order so the next try gets a fresh key.
        """
        attempt = self.store.get(StorageKey.PAYMENT_ATTEMPT)
        if not attempt:
            attempt = uuid.uuid4().hex
            self.store.set(StorageKey.PAYMENT_ATTEMPT, attempt)
        payload = json.dumps(
            {
                "attempt": attempt,
                "cart": self.cart.snapshot(),
                "amount_cents": request.amount_cents,
                "metadata": request.metadata,
                "payment_method": payment_method_id,
            },
            sort_keys=True,
            default=str,
        )
        return f"checkout-{hashlib.sha256(payload.encode()).hexdigest()}"

    def _ensure_ready_for_payment(self) -> PricingBreakdown:
        self._require_items()
        state = self.state
        if not state.ready_for_payment:
            missing = [s.value for s in PRE_PAYMENT_STEPS if s not in state.confirmed]
            raise CheckoutValidationError({"step": f"Please complete: {', '.join(missing)}"})

        pricing = self.get_pricing()
        if not pricing.meets_minimum_order:
            raise CheckoutValidationError({
                "subtotal": f"Minimum order for this delivery distance is ${pricing.minimum_order:.2f}",
            })
        return pricing

    def _payment_request(self, expected_total: Decimal, pricing: PricingBreakdown):
        delivery = self.delivery_info()
        try:
            return build_payment_request(
                amount_cents=to_cents(expected_total),
                pricing=pricing,
                line_items=self.cart.snapshot(),
                customer=self.customer(),
                delivery=delivery,
                group_order_token=self.group_order_token(),
            )
        except PaymentAmountMismatchError:
            logger.error(
                f"Payment blocked: displayed total {expected_total} does not match "
                f"computed total {pricing.final_total}"
            )
            raise
        except ValueError as e:
            raise CheckoutValidationError({"payment": str(e)}) from e

    def create_payment_intent(self, expected_total: Decimal) -> PaymentIntentResult:
        """Intent for client-side confirmation; finish with ``complete_order``."""
        with self._processing():
            pricing = self._ensure_ready_for_payment()
            request = self._payment_request(expected_total, pricing)
            return self.payment_service.create_payment_intent(
                request, idempotency_key=self._idempotency_key(request)
            )

    def submit_payment(self, payment_method_id: str, expected_total: Decimal) -> CheckoutResult:
        """Create and confirm a payment server-side; on success the order is created."""
        with self._processing():
            pricing = self._ensure_ready_for_payment()
            request = self._payment_request(expected_total, pricing)
            try:
                intent = self.payment_service.create_payment_intent(
                    request,
                    payment_method_id=payment_method_id,
                    idempotency_key=self._idempotency_key(request, payment_method_id),
                )
            except PaymentError:
                self.store.delete(StorageKey.PAYMENT_ATTEMPT)
                raise

            if intent.succeeded:
                order = self._finalize(intent, pricing)
                return CheckoutResult(
                    status=intent.status, payment_intent_id=intent.payment_intent_id, order=order, created=True
                )

            if intent.requires_action:
                return CheckoutResult(
                    status=intent.status,
                    payment_intent_id=intent.payment_intent_id,
                    client_secret=intent.client_secret,
                )

            logger.warning(f"Payment intent {intent.payment_intent_id} ended in status {intent.status}")
            self.store.delete(StorageKey.PAYMENT_ATTEMPT)
            raise PaymentError("Payment was not completed. Please try again.", code=intent.status)

    def complete_order(self, payment_intent_id: str) -> CheckoutResult:
        """Create the order for an intent confirmed on the client.

        Repeating the call returns the order already created for this
        session with ``created`` False. An intent whose order belongs to
        another session raises ``OrderNotFoundError``.
        """
        existing = self._orders().get_by_payment_intent(payment_intent_id)
        if existing is not None:
            last = self.store.get(StorageKey.LAST_ORDER) or {}
            if last.get("order_number") != existing.order_number:
                logger.warning(f"Order lookup for intent {payment_intent_id} from a session that did not place it")
                raise OrderNotFoundError(payment_intent_id)
            return CheckoutResult(status="succeeded", payment_intent_id=payment_intent_id, order=existing)

        with self._processing():
            pricing = self._ensure_ready_for_payment()
            intent = self.payment_service.retrieve_payment_intent(payment_intent_id)
            if not intent.succeeded:
                raise PaymentError(f"Payment has not succeeded (status: {intent.status})", code=intent.status)
            expected_cents = to_cents(pricing.final_total)
            if abs(intent.amount - expected_cents) > AMOUNT_TOLERANCE_CENTS:
                raise PaymentAmountMismatchError(intent.amount, expected_cents)
            order = self._finalize(intent, pricing)
            return CheckoutResult(status=intent.status, payment_intent_id=payment_intent_id, order=order, created=True)

    def _orders(self) -> OrderService:
        if self.order_service is None:
            raise RuntimeError("CheckoutService needs an OrderService to create orders")
        return self.order_service

    def _finalize(self, intent: PaymentIntentResult, pricing: PricingBreakdown):
        delivery = self.delivery_info()
        order = self._orders().create_order(
            line_items=self.cart.snapshot(),
            customer=self.customer(),
            address=self.address(),
            delivery_date=date.fromisoformat(delivery["date"]),
            delivery_time=delivery["time_slot"],
            pricing=pricing,
            payment_intent_id=intent.payment_intent_id,
            group_order_token=self.group_order_token(),
        )

        self.store.set(StorageKey.LAST_ORDER, build_last_order(order).to_dict())
        self.store.clear([
            StorageKey.CART,
            StorageKey.APPLIED_DISCOUNT,
            StorageKey.ADD_TO_ORDER,
            StorageKey.BUNDLE_READY,
            StorageKey.CHECKOUT_STATE,
            StorageKey.DELIVERY_QUOTE,
            StorageKey.TIP,
            StorageKey.PAYMENT_ATTEMPT,
            *StorageKey.GROUP_KEYS,
        ])
        self.cart = CartService(self.store)
        return order


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value).date() if "T" in value else date.fromisoformat(value)
    except ValueError:
        return None


def is_synthetic_discount(discount: Optional[AppliedDiscount]) -> bool:
    return bool(discount and discount.code in SYNTHETIC_DISCOUNT_CODES)
