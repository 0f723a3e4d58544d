#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import asyncio
import tempfile
import sys
import os
from pathlib import Path
from datetime import datetime, timedelta, timezone

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from subscription.entitlement_service import EntitlementService, set_entitlement_service
from subscription.models import PaymentConfirmation
from subscription.payment_gateway import PaymentGateway
from subscription.storage import FileSubscriptionStore, MemorySubscriptionStore, PersistenceError


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


# ============================================================================
# TEMPORARY DIRECTORIES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ============================================================================
# CLOCK
# ============================================================================

START_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Controllable clock returning aware UTC datetimes"""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


# ============================================================================
# STORES
# ============================================================================

class FlakyStore(MemorySubscriptionStore):
    """Memory store whose writes can be made to fail"""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.saves = 0

    def save(self, user_id, data):
        if self.fail_writes:
            raise PersistenceError(user_id, "Disk full")
        self.saves += 1
        super().save(user_id, data)


@pytest.fixture
def memory_store():
    return FlakyStore()


@pytest.fixture
def file_store(temp_dir):
    return FileSubscriptionStore(str(temp_dir / "storage"))


# ============================================================================
# PAYMENT GATEWAY
# ============================================================================

class FakeGateway(PaymentGateway):
    """Records calls and answers like the payments backend"""

    def __init__(self, delay: float = 0.0, verify_error=None, cancel_error=None,
                 customer_id: str = "cus_verified"):
        self.delay = delay
        self.verify_error = verify_error
        self.cancel_error = cancel_error
        self.customer_id = customer_id
        self.verified = []
        self.cancelled = []

    async def verify_payment(self, confirmation):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.verified.append(confirmation)
        if self.verify_error:
            raise self.verify_error
        return PaymentConfirmation(
            payment_method=confirmation.payment_method,
            customer_id=confirmation.customer_id or self.customer_id,
            subscription_id=confirmation.subscription_id,
        )

    async def cancel_subscription(self, subscription_id, cancel_at_period_end=True):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.cancelled.append((subscription_id, cancel_at_period_end))
        if self.cancel_error:
            raise self.cancel_error
        return {"id": subscription_id, "status": "canceled"}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def fake_gateway_cls():
    return FakeGateway


# ============================================================================
# SERVICE FIXTURES
# ============================================================================

@pytest.fixture
def make_service(memory_store, clock):
    """Factory for services sharing the test store and clock"""
    def factory(**kwargs):
        kwargs.setdefault("store", memory_store)
        kwargs.setdefault("clock", clock)
        return EntitlementService(**kwargs)
    return factory


@pytest.fixture
def service(make_service):
    """Service without a payment gateway"""
    return make_service()


@pytest.fixture
def global_service(service):
    """Install the service as the global instance used by feature gate decorators"""
    set_entitlement_service(service)
    yield service
    set_entitlement_service(None)


@pytest.fixture
def payment():
    return PaymentConfirmation(
        payment_method="stripe",
        customer_id="cus_123",
        subscription_id="sub_123",
    )


# ============================================================================
# FASTAPI TEST CLIENT FIXTURES
# ============================================================================

@pytest.fixture
def app():
    """Create FastAPI application for testing"""
    from web_ui.api.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app, service):
    """Synchronous test client bound to the test service"""
    from fastapi.testclient import TestClient
    from web_ui.api.routes.subscription import get_service

    app.dependency_overrides[get_service] = lambda: service
    return TestClient(app)

