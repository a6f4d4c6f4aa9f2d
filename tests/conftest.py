import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="race-payments-tests-")

# settings are read at import time
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/test.db"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["JWT_SECRET"] = "test-jwt-secret-0123456789abcdef0123"
os.environ["LOG_JSON"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

from app.main import app  # noqa: E402
from app.core.db import Base, SessionLocal, engine  # noqa: E402
from app.core.deps import get_gateway, get_mailer  # noqa: E402
from app.models.coupon import Coupon  # noqa: E402
from app.services import registrations  # noqa: E402
from tests.helpers import FakeMailer, FakeRazorpay, RecordingNotifier  # noqa: E402


@pytest.fixture(autouse=True)
async def schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # pooled aiosqlite connections belong to this test's event loop
    await engine.dispose()


@pytest.fixture
async def db():
    async with SessionLocal() as session:
        yield session


@pytest.fixture
def fake_razorpay():
    return FakeRazorpay()


@pytest.fixture
def gateway(fake_razorpay):
    return fake_razorpay.client()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
async def client(fake_razorpay, mailer):
    app.dependency_overrides[get_gateway] = fake_razorpay.client
    app.dependency_overrides[get_mailer] = lambda: mailer
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def add_coupon(db):
    async def _add(code="RUN10", discount_value=10, max_usage=None, is_active=True, expires_at=None):
        coupon = Coupon(
            code=code,
            discount_type="PERCENT",
            discount_value=discount_value,
            is_active=is_active,
            expires_at=expires_at,
            max_usage=max_usage,
            usage_count=0,
            reserved_count=0,
        )
        db.add(coupon)
        await db.commit()
        return coupon

    return _add


@pytest.fixture
def make_registration(db):
    counter = {"n": 0}

    async def _make(race="5KM", email=None, name="Asha Runner"):
        counter["n"] += 1
        reg, _ = await registrations.create_or_reuse(
            db,
            name=name,
            email=email or f"runner{counter['n']}@example.com",
            phone="9876543210",
            race=race,
            tshirt_size="M",
            gender="female",
            dob=date(1995, 4, 12),
            emergency_name="Ravi Runner",
            emergency_phone="9123456780",
        )
        return reg

    return _make
