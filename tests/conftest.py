import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["PAYMENT_PROVIDER"] = "paystack"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_paystack"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_mock"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_mock"
os.environ["OPS_API_KEY"] = "ops-test-key"
os.environ["OPS_EMAIL"] = "ops@test.local"
os.environ["SWEEPER_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.dependencies import get_orchestrator
from app.ledger import SqlLedger
from app.main import app
from app.models import Book, Order, User
from app.models.database import Base, get_db
from app.services.couriers import CourierBooking, CourierError, CourierProvider, CourierQuote
from app.services.notifications import Notifier
from app.services.order_orchestrator import CartItem, CheckoutRequest, OrchestratorConfig, OrderOrchestrator
from app.services.payment_gateways import PAYMENT_SUCCESS, ChargeResult, RefundResult, VerificationResult

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # a Monday


class FakeClock:
    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FakePaymentGateway:
    """In-memory gateway: ``charge`` captures immediately, ``verify`` reports what was captured."""

    method = "fake"
    enabled = True

    def __init__(self):
        self.payments: dict[str, int] = {}
        self.statuses: dict[str, str] = {}
        self.charges: list[tuple[str, int, dict]] = []
        self.refunds: list[tuple[str, int, str]] = []
        self.charge_error: Exception | None = None
        self.refund_error: Exception | None = None

    def charge(self, email: str, amount_minor: int, metadata: dict) -> ChargeResult:
        if self.charge_error:
            raise self.charge_error
        reference = f"PAY_{len(self.charges) + 1}"
        self.charges.append((email, amount_minor, metadata))
        self.payments[reference] = amount_minor
        return ChargeResult(reference=reference, authorization_url=f"https://pay.test/{reference}")

    def verify(self, reference: str) -> VerificationResult:
        status = self.statuses.get(reference, PAYMENT_SUCCESS if reference in self.payments else "failed")
        return VerificationResult(reference=reference, status=status, amount_minor=self.payments.get(reference, 0))

    def refund(self, reference: str, amount_minor: int, reason: str) -> RefundResult:
        if self.refund_error:
            raise self.refund_error
        self.refunds.append((reference, amount_minor, reason))
        return RefundResult(status="processed", reference=f"RF_{len(self.refunds)}")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: list[tuple[str, str, dict]] = []
        super().__init__(sender=self._record)

    def _record(self, to_address: str, template_name: str, template_data: dict) -> None:
        self.sent.append((to_address, template_name, template_data))

    def templates(self) -> list[str]:
        return [template_name for _, template_name, _ in self.sent]

    def sent_to(self, to_address: str) -> list[str]:
        return [template_name for address, template_name, _ in self.sent if address == to_address]


def make_courier(name: str, error: str | None = None, tracking_number: str = "TRK-1") -> CourierProvider:
    calls = []

    def book_pickup(pickup_address, delivery_address, parcel, reference):
        calls.append({"pickup": pickup_address, "delivery": delivery_address, "parcel": parcel, "reference": reference})
        if error:
            raise CourierError(error)
        return CourierBooking(
            provider=name,
            tracking_number=tracking_number,
            pickup_date="2026-03-03",
            pickup_window="09:00 - 17:00",
            label_url=None,
        )

    def quote(pickup_address, delivery_address, parcel):
        if error:
            raise CourierError(error)
        return [CourierQuote(provider=name, price=Decimal("89.00"))]

    provider = CourierProvider(name=name, book_pickup=book_pickup, quote=quote)
    provider.options["calls"] = calls
    return provider


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def couriers() -> list[CourierProvider]:
    return [make_courier("courier-guy", tracking_number="CG-1001"), make_courier("fastway", tracking_number="FW-2002")]


@pytest.fixture
def orchestrator(db, gateway, couriers, notifier, clock) -> OrderOrchestrator:
    return OrderOrchestrator(
        ledger=SqlLedger(db),
        payment_gateway=gateway,
        couriers=couriers,
        notifier=notifier,
        label_store=None,
        config=OrchestratorConfig(ops_email="ops@test.local", frontend_url="https://books.test"),
        clock=clock,
    )


@pytest.fixture(scope="function")
def client(db: Session, orchestrator: OrderOrchestrator) -> Generator[TestClient, None, None]:
    """Create a test client with database and orchestrator overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _add_user(db: Session, email: str, name: str, **kwargs) -> User:
    user = User(email=email, name=name, **kwargs)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def buyer(db: Session) -> User:
    return _add_user(db, "buyer@example.com", "Bongani Buyer", phone="0820000001")


@pytest.fixture
def other_buyer(db: Session) -> User:
    return _add_user(db, "second.buyer@example.com", "Second Buyer")


@pytest.fixture
def seller_a(db: Session) -> User:
    return _add_user(
        db,
        "seller.a@example.com",
        "Seller A",
        phone="0820000002",
        pickup_address={"street": "12 Long St", "city": "Cape Town", "province": "Western Cape", "postal_code": "8001"},
        subaccount_code="ACCT_a",
    )


@pytest.fixture
def seller_b(db: Session) -> User:
    return _add_user(
        db,
        "seller.b@example.com",
        "Seller B",
        pickup_address={"street": "4 Smith St", "city": "Durban", "province": "KwaZulu-Natal", "postal_code": "4001"},
    )


def _add_book(db: Session, seller: User, title: str, price: str, weight: str = "0.5") -> Book:
    book = Book(seller_id=seller.id, title=title, price=Decimal(price), weight_kg=Decimal(weight), sold=False)
    db.add(book)
    db.commit()
    db.refresh(book)
    return book


@pytest.fixture
def books_a(db: Session, seller_a: User) -> list[Book]:
    return [
        _add_book(db, seller_a, "Calculus: Early Transcendentals", "60.00", "1.2"),
        _add_book(db, seller_a, "Organic Chemistry", "40.00"),
    ]


@pytest.fixture
def book_b(db: Session, seller_b: User) -> Book:
    return _add_book(db, seller_b, "Principles of Economics", "50.00")


@pytest.fixture
def shipping_address() -> dict:
    return {
        "street": "1 Main Rd",
        "city": "Johannesburg",
        "province": "Gauteng",
        "postal_code": "2001",
        "country": "ZA",
        "phone": "0820000001",
    }


def token_for(user: User, expires_in: timedelta = timedelta(hours=1)) -> str:
    return jwt.encode(
        {"sub": str(user.id), "type": "access", "exp": datetime.now(timezone.utc) + expires_in},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}


OPS_HEADERS = {"X-Ops-Key": "ops-test-key"}


@pytest.fixture
def placed_orders(orchestrator, gateway, buyer, books_a, book_b, shipping_address) -> dict[int, Order]:
    """One paid checkout spanning both sellers, keyed by seller id."""
    books = [*books_a, book_b]
    gateway.payments["PAY_1"] = 15000
    orders = orchestrator.create_orders(
        CheckoutRequest(
            buyer_id=buyer.id,
            buyer_email=buyer.email,
            items=[CartItem(book_id=book.id, seller_id=book.seller_id, price=book.price, title=book.title) for book in books],
            shipping_address=shipping_address,
            payment_reference="PAY_1",
            total_amount=Decimal("150.00"),
        )
    )
    return {order.seller_id: order for order in orders}
