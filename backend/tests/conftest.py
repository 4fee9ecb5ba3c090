"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import date, timedelta
from decimal import Decimal
from typing import Generator

# Point the application engine at a throwaway file before settings load
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'storefront_test.db')}"
)
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.config import settings
from storefront.core.security import create_admin_token
from storefront.db.base import Base
from storefront.db.session import get_db
from storefront.main import app
# Import all models to ensure they're registered with Base.metadata
from storefront.models import DeliveryAppVariation, SessionStateEntry, StorefrontOrder  # noqa: F401
from storefront.services.order_service import OrderService
from storefront.services.pricing_service import PricingCalculator
from storefront.services.state_store import InMemoryStateStore

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

SESSION_ID = "test-session-0001"
TIME_SLOT = "2:00 PM - 4:00 PM"

@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override and a fixed shopper session."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiters during tests to avoid flaky failures
    from storefront.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        test_client.headers["X-Session-ID"] = SESSION_ID
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()

@pytest.fixture
def state_store() -> InMemoryStateStore:
    """Fresh in-memory shopper state."""
    return InMemoryStateStore()

@pytest.fixture
def calculator() -> PricingCalculator:
    """Calculator pinned to the storefront's published rates."""
    return PricingCalculator(
        sales_tax_rate=Decimal("0.0825"),
        standard_fee=Decimal("20.00"),
        free_delivery_threshold=Decimal("200"),
        percentage_rate=Decimal("0.10"),
    )

@pytest.fixture
def admin_token() -> str:
    """JWT for the configured admin."""
    return create_admin_token(settings.admin_email)

@pytest.fixture
def admin_headers(admin_token: str) -> dict:
    """Get authentication headers."""
    return {"Authorization": f"Bearer {admin_token}"}

@pytest.fixture
def delivery_date() -> date:
    """A delivery date safely in the future."""
    return date.today() + timedelta(days=3)

@pytest.fixture
def placed_order(db_session: Session, calculator: PricingCalculator, delivery_date: date):
    """A paid order that can be shared as a group order."""
    pricing = calculator.calculate(Decimal("50.00"), calculator.standard_quote())
    return OrderService(db_session).create_order(
        line_items=[{"id": "tito", "title": "Tito's Vodka", "price": "25.00", "quantity": 2, "variant": None}],
        customer={"first_name": "Ana", "last_name": "Lopez", "email": "ana@example.com", "phone": "5125550100"},
        address={"street": "100 Congress Ave", "city": "Austin", "state": "TX", "zip_code": "78701"},
        delivery_date=delivery_date,
        delivery_time=TIME_SLOT,
        pricing=pricing,
        payment_intent_id="pi_placed",
    )
