import logging
from datetime import timedelta

import httpx
from sqlalchemy import select

from conftest import auth_headers
from sureodds.api.deps import get_mpesa_client
from sureodds.core.plans import PlanKind
from sureodds.integrations.mpesa_client import MpesaAuthError, MpesaClient, MpesaRequestError, StkPushResponse
from sureodds.main import app
from sureodds.models.payment import PaymentRequest, PaymentStatus
from sureodds.models.user import User
from sureodds.utils.dt import utcnow


def _payments(db):
    db.expire_all()
    return db.scalars(select(PaymentRequest)).all()


def test_initiation_tracks_a_pending_request(client, db, fake_mpesa, make_user):
    user = make_user()

    r = client.post("/mpesa/stkpush", json={"phone": "0712 345 678", "plan_type": "WEEKLY"}, headers=auth_headers(user))

    assert r.status_code == 200, r.text
    data = r.json()
    assert data["success"] is True
    assert data["checkout_request_id"] == "ws_CO_191220191020363925_1"
    assert data["message"] == "Success. Request accepted for processing"

    assert fake_mpesa.calls == [{
        "phone": "254712345678",
        "amount": 250,
        "account_reference": "SureOdds-WEEKLY",
        "transaction_desc": "VIP WEEKLY Subscription",
    }]

    [payment] = _payments(db)
    assert payment.user_id == user.id
    assert payment.status == PaymentStatus.PENDING
    assert payment.plan_kind == PlanKind.WEEKLY
    assert payment.amount == 250
    assert payment.phone == "254712345678"
    assert payment.merchant_request_id == "29115-34620561-1"


def test_phone_of_record_is_backfilled_once(client, db, make_user):
    user = make_user()
    client.post("/mpesa/stkpush", json={"phone": "+254712345678", "plan_type": "DAILY"}, headers=auth_headers(user))

    db.expire_all()
    assert db.get(User, user.id).phone == "254712345678"


def test_existing_phone_of_record_is_kept(client, db, make_user):
    user = make_user(phone="254799999999")
    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(user))
    assert r.status_code == 200

    db.expire_all()
    assert db.get(User, user.id).phone == "254799999999"


def test_requires_authentication(client, fake_mpesa):
    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"})
    assert r.status_code == 401
    assert fake_mpesa.calls == []


def test_rejects_bad_token(client):
    r = client.post(
        "/mpesa/stkpush",
        json={"phone": "0712345678", "plan_type": "DAILY"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert r.status_code == 401


def test_rejects_bad_phone_before_anything_else(client, db, fake_mpesa, make_user, make_grant):
    user = make_user()
    make_grant(user)  # would also trip the active-subscription check

    r = client.post("/mpesa/stkpush", json={"phone": "07-12ab", "plan_type": "DAILY"}, headers=auth_headers(user))

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_phone"
    assert fake_mpesa.calls == []


def test_rejects_unknown_plan_type(client, fake_mpesa, make_user):
    user = make_user()
    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "YEARLY"}, headers=auth_headers(user))

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "validation_error"
    assert fake_mpesa.calls == []


def test_active_subscription_blocks_initiation(client, db, fake_mpesa, make_user, make_grant):
    user = make_user()
    grant = make_grant(user, plan_kind=PlanKind.WEEKLY, duration=timedelta(days=7))

    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(user))

    assert r.status_code == 400
    error = r.json()["error"]
    assert error["code"] == "active_subscription"
    assert error["subscription_end"].startswith(grant.ends_at.date().isoformat())
    assert fake_mpesa.calls == []
    assert _payments(db) == []


def test_expired_subscription_does_not_block(client, make_user, make_grant):
    user = make_user()
    make_grant(user, starts_at=utcnow() - timedelta(days=2), duration=timedelta(days=1))

    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(user))
    assert r.status_code == 200


def test_recent_pending_request_blocks_and_surfaces_its_checkout_id(client, db, fake_mpesa, make_user, make_payment):
    user = make_user()
    make_payment(user, checkout_request_id="ws_CO_inflight", created_at=utcnow() - timedelta(minutes=2))

    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(user))

    assert r.status_code == 400
    error = r.json()["error"]
    assert error["code"] == "payment_pending"
    assert error["checkout_request_id"] == "ws_CO_inflight"
    assert fake_mpesa.calls == []


def test_stale_pending_request_ages_out_but_is_not_finalized(client, db, make_user, make_payment):
    user = make_user()
    make_payment(user, checkout_request_id="ws_CO_stale", created_at=utcnow() - timedelta(minutes=6))

    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(user))

    assert r.status_code == 200
    statuses = {p.checkout_request_id: p.status for p in _payments(db)}
    assert statuses["ws_CO_stale"] == PaymentStatus.PENDING
    assert len(statuses) == 2


def test_other_users_pending_requests_do_not_block(client, make_user, make_payment):
    someone_else = make_user()
    make_payment(someone_else)

    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(make_user()))
    assert r.status_code == 200


def test_processor_rejection_surfaces_description_and_persists_nothing(client, db, fake_mpesa, make_user):
    fake_mpesa.response = StkPushResponse(
        MerchantRequestID="m",
        CheckoutRequestID="c",
        ResponseCode="1",
        ResponseDescription="Unable to lock subscriber, a transaction is already in process for the current subscriber",
    )
    user = make_user()

    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(user))

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "payment_rejected"
    assert r.json()["detail"].startswith("Unable to lock subscriber")
    assert _payments(db) == []


def test_token_failure_is_a_generic_upstream_error(client, db, fake_mpesa, make_user):
    fake_mpesa.error = MpesaAuthError("Invalid Authentication passed")

    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(make_user()))

    assert r.status_code == 500
    assert r.json()["error"] == {"code": "upstream_error", "message": "Failed to initiate payment"}
    assert _payments(db) == []


def test_push_transport_failure_does_not_leak_details(client, db, fake_mpesa, make_user):
    fake_mpesa.error = MpesaRequestError("Bad Request - Invalid Access Token", status_code=400)

    r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "MONTHLY"}, headers=auth_headers(make_user()))

    assert r.status_code == 500
    assert "Access Token" not in r.text
    assert _payments(db) == []


def test_gateway_html_page_is_a_generic_upstream_error(client, db, make_user, caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>", headers={"Content-Type": "text/html"})

    mpesa = MpesaClient(
        base_url="https://sandbox.safaricom.co.ke",
        consumer_key="key",
        consumer_secret="secret",
        shortcode="174379",
        passkey="passkey",
        callback_url="https://sureodds.example.com/mpesa/callback",
        transport=httpx.MockTransport(handler),
    )
    app.dependency_overrides[get_mpesa_client] = lambda: mpesa

    with caplog.at_level(logging.ERROR, logger="sureodds"):
        r = client.post("/mpesa/stkpush", json={"phone": "0712345678", "plan_type": "DAILY"}, headers=auth_headers(make_user()))

    assert r.status_code == 500
    assert r.json()["error"] == {"code": "upstream_error", "message": "Failed to initiate payment"}
    assert any(rec.getMessage() == "payment.upstream_error" for rec in caplog.records)
    assert _payments(db) == []
