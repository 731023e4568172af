import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOW_BALANCE_EMAILS_ENABLED"] = "false"

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import get_session
from exceptions import ExternalServiceError, NotFoundError
from main import app
from models import Base, CasualRate, ConcessionPackage
from services import ledger_service
from services.auth_provider import AuthProvider, get_auth_provider
from services.payment_gateway import get_payment_gateway
from services.student_service import StudentService
from utils.dates import utcnow


class FakeGateway:
    """Stands in for StripeGateway; records every call."""

    def __init__(self):
        self.customers = []
        self.charges = []
        self.refunds = []

    def create_customer(self, email, name, student_id):
        self.customers.append(student_id)
        return f"cus_{student_id[:8]}"

    def charge(self, amount, customer_id, payment_method_id, description, idempotency_key=None, metadata=None):
        self.charges.append({"amount": Decimal(str(amount)), "customer_id": customer_id, "idempotency_key": idempotency_key})
        return {
            "payment_intent_id": f"pi_{len(self.charges)}",
            "status": "succeeded",
            "receipt_url": "https://pay.example/receipts/1",
        }

    def refund(self, payment_intent_id, amount, idempotency_key=None, reason=None):
        self.refunds.append({"payment_intent_id": payment_intent_id, "amount": Decimal(str(amount))})
        return f"re_{len(self.refunds)}"


class FakeAuthProvider(AuthProvider):
    """In-memory identity provider. fail_updates makes update_email raise."""

    def __init__(self):
        self.users = {}
        self.deleted = []
        self.email_updates = []
        self.fail_updates = 0
        self._next = 0

    def create_user(self, email, password):
        self._next += 1
        uid = f"uid-{self._next}"
        self.users[uid] = email
        return uid

    def update_email(self, uid, email):
        if self.fail_updates:
            self.fail_updates -= 1
            raise ExternalServiceError("Identity provider unreachable")
        self.email_updates.append((uid, email))
        self.users[uid] = email

    def delete_user(self, uid):
        if uid not in self.users:
            raise NotFoundError("Portal account not found")
        del self.users[uid]
        self.deleted.append(uid)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def auth_provider():
    return FakeAuthProvider()


@pytest.fixture
def make_student(db):
    def _make(first_name="Jane", last_name="Doe", email=None, **kwargs):
        return StudentService.create_student(db, first_name, last_name, email=email, **kwargs)
    return _make


@pytest.fixture
def student(make_student):
    return make_student("Jane", "Doe", email="jane@example.com")


@pytest.fixture
def package(db):
    package = ConcessionPackage(
        id="5-class",
        name="5 Class Concession",
        number_of_classes=5,
        price=Decimal("55.00"),
        expiry_months=6,
        is_active=True,
    )
    db.add(package)
    db.flush()
    return package


@pytest.fixture
def casual_rates(db):
    rates = [
        CasualRate(id="casual", name="Casual Class", price=Decimal("15.00"), is_student=False, display_order=1),
        CasualRate(id="casual-student", name="Student Casual Class", price=Decimal("12.00"), is_student=True, display_order=2),
    ]
    db.add_all(rates)
    db.flush()
    return {rate.id: rate for rate in rates}


@pytest.fixture
def make_block(db):
    def _make(student, quantity=5, purchase_date=None, expiry_date=None, price=Decimal("55.00"), payment_method="cash"):
        purchase_date = purchase_date or utcnow()
        if expiry_date is None:
            expiry_date = utcnow() + timedelta(days=180)
        return ledger_service.create_block(
            db,
            student.id,
            ledger_service.PackageRef("5-class", "5 Class Concession"),
            quantity=quantity,
            price=price,
            payment_method=payment_method,
            expiry_date=expiry_date,
            purchase_date=purchase_date,
        )
    return _make


def make_token(role="admin", student_id=None, uid="admin-1", email="admin@studio.test"):
    claims = {"id": uid, "role": role, "email": email}
    if student_id:
        claims["student_id"] = student_id
    return jwt.encode(claims, "test-secret", algorithm="HS256")


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def client(db, gateway, auth_provider):
    def override_get_session():
        try:
            yield db
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_auth_provider] = lambda: auth_provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
