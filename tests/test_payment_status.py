from conftest import auth_headers
from sureodds.models.payment import PaymentStatus


def test_pending_request_reports_pending(client, make_user, make_payment):
    user = make_user()
    make_payment(user, checkout_request_id="ws_CO_mine")

    r = client.get("/mpesa/status", params={"checkout_request_id": "ws_CO_mine"}, headers=auth_headers(user))

    assert r.status_code == 200
    assert r.json() == {"status": "PENDING", "mpesa_receipt": None, "result_desc": None, "subscription": None}


def test_someone_elses_request_looks_missing(client, make_user, make_payment):
    owner, snoop = make_user(), make_user()
    make_payment(owner, checkout_request_id="ws_CO_private")

    r = client.get("/mpesa/status", params={"checkout_request_id": "ws_CO_private"}, headers=auth_headers(snoop))
    missing = client.get("/mpesa/status", params={"checkout_request_id": "ws_CO_nope"}, headers=auth_headers(snoop))

    assert r.status_code == missing.status_code == 404
    assert r.json() == missing.json()
    assert r.json()["detail"] == "Transaction not found"


def test_missing_checkout_id_is_a_bad_request(client, make_user):
    r = client.get("/mpesa/status", headers=auth_headers(make_user()))
    assert r.status_code == 400
    assert r.json()["detail"] == "Missing checkout_request_id"


def test_status_requires_authentication(client, make_user, make_payment):
    make_payment(make_user(), checkout_request_id="ws_CO_x")
    r = client.get("/mpesa/status", params={"checkout_request_id": "ws_CO_x"})
    assert r.status_code == 401


def test_failed_request_has_no_subscription(client, make_user, make_payment):
    user = make_user()
    make_payment(user, checkout_request_id="ws_CO_failed", status=PaymentStatus.FAILED)

    r = client.get("/mpesa/status", params={"checkout_request_id": "ws_CO_failed"}, headers=auth_headers(user))

    assert r.json()["status"] == "FAILED"
    assert r.json()["subscription"] is None
