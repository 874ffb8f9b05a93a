"""
Shared fixtures: in-memory SQLite, a FastAPI TestClient with the DB session
and the M-Pesa client overridden, and small factories for rows.
"""

from datetime import timedelta
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sureodds.api.deps import get_mpesa_client
from sureodds.core.config import settings
from sureodds.core.plans import PlanCatalog, PlanKind
from sureodds.core.security import create_access_token
from sureodds.db.base import Base
from sureodds.db.session import get_db
from sureodds.integrations.mpesa_client import StkPushResponse
from sureodds.main import app
from sureodds.models.entitlement import EntitlementGrant
from sureodds.models.payment import PaymentRequest, PaymentStatus
from sureodds.models.user import User
from sureodds.models.voucher import Voucher  # noqa: F401  (registers the table)
from sureodds.services.ledger import EntitlementLedger
from sureodds.utils.dt import utcnow


class FakeMpesa:
    """Stands in for MpesaClient.stk_push; records every call."""

    def __init__(self):
        self.calls: list[dict] = []
        self.response: StkPushResponse | None = None
        self.error: Exception | None = None
        self._ids = count(1)

    async def stk_push(self, *, phone, amount, account_reference, transaction_desc, now=None):
        self.calls.append({
            "phone": phone,
            "amount": amount,
            "account_reference": account_reference,
            "transaction_desc": transaction_desc,
        })
        if self.error:
            raise self.error
        if self.response:
            return self.response
        n = next(self._ids)
        return StkPushResponse(
            MerchantRequestID=f"29115-34620561-{n}",
            CheckoutRequestID=f"ws_CO_191220191020363925_{n}",
            ResponseCode="0",
            ResponseDescription="Success. Request accepted for processing",
            CustomerMessage="Success. Request accepted for processing",
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def plans():
    return PlanCatalog.from_settings(settings)


@pytest.fixture
def ledger(plans):
    return EntitlementLedger(plans)


@pytest.fixture
def fake_mpesa():
    return FakeMpesa()


@pytest.fixture
def client(session_factory, fake_mpesa):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mpesa_client] = lambda: fake_mpesa
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------
# factories
# ---------------------------

_emails = count(1)


@pytest.fixture
def make_user(db):
    def _make(role: str = "USER", phone: str | None = None) -> User:
        user = User(
            email=f"punter{next(_emails)}@example.com",
            password_hash="not-a-real-hash",
            phone=phone,
            role=role,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_payment(db):
    def _make(user: User, *, checkout_request_id: str = "ws_CO_TEST_1", plan_kind: PlanKind = PlanKind.WEEKLY,
              status: PaymentStatus = PaymentStatus.PENDING, created_at=None) -> PaymentRequest:
        created_at = created_at or utcnow()
        payment = PaymentRequest(
            user_id=user.id,
            merchant_request_id=f"mr-{checkout_request_id}",
            checkout_request_id=checkout_request_id,
            amount=250,
            plan_kind=plan_kind,
            phone="254712345678",
            status=status,
            created_at=created_at,
            updated_at=created_at,
        )
        db.add(payment)
        db.commit()
        return payment
    return _make


@pytest.fixture
def make_grant(db):
    def _make(user: User, *, plan_kind: PlanKind = PlanKind.DAILY, starts_at=None,
              duration: timedelta = timedelta(days=1), is_active: bool = True) -> EntitlementGrant:
        starts_at = starts_at or utcnow()
        grant = EntitlementGrant(
            user_id=user.id,
            plan_kind=plan_kind,
            starts_at=starts_at,
            ends_at=starts_at + duration,
            is_active=is_active,
        )
        db.add(grant)
        db.commit()
        return grant
    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role)}"}


def stk_callback_body(
    checkout_request_id: str,
    *,
    result_code: int = 0,
    result_desc: str = "The service request is processed successfully.",
    amount: int = 250,
    receipt: str = "NLJ7RT61SV",
    phone: int = 254712345678,
) -> dict:
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "Balance"},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": callback}}
