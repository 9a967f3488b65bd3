import httpx
import pytest
import respx

from flightpay.models.payments import PaymentRecord
from flightpay.services.payment_store import SqlAlchemyPaymentStore

from .conftest import PaidRecorder
from .helpers import HMAC_SECRET, IFRAME_ID, ORDER_ID, PAYMOB_BASE_URL, make_transaction, signed_callback


@pytest.fixture
async def pending_payment(store: SqlAlchemyPaymentStore) -> PaymentRecord:
    return await store.create(
        booking_id="BK1", amount_cents=150000, currency="EGP", gateway_order_id=ORDER_ID
    )


@pytest.mark.anyio
async def test_app_health(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.anyio
async def test_create_intent_happy_path(async_client: httpx.AsyncClient, store: SqlAlchemyPaymentStore) -> None:
    payload = {
        "amount": 150000,
        "currency": "EGP",
        "bookingId": "BK1",
        "billingData": {"firstName": "Mona", "email": "mona@example.com"},
    }

    with respx.mock(assert_all_called=True) as router:
        router.post(f"{PAYMOB_BASE_URL}/auth/tokens").respond(200, json={"token": "auth_token_1"})
        router.post(f"{PAYMOB_BASE_URL}/ecommerce/orders").respond(201, json={"id": ORDER_ID})
        router.post(f"{PAYMOB_BASE_URL}/acceptance/payment_keys").respond(201, json={"token": "pk_test_token"})

        resp = await async_client.post("/api/payment/create-intent", json=payload)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["paymentKey"] == "pk_test_token"
    assert body["data"]["orderId"] == ORDER_ID
    assert body["data"]["iframeUrl"].endswith(f"/iframes/{IFRAME_ID}?payment_token=pk_test_token")
    assert body["data"]["amount"] == 150000
    assert body["data"]["currency"] == "EGP"

    record = await store.find_by_gateway_order_id(ORDER_ID)
    assert record.id == body["data"]["paymentId"]


@pytest.mark.anyio
async def test_create_intent_gateway_outage_returns_generic_error(async_client: httpx.AsyncClient) -> None:
    with respx.mock(assert_all_called=True) as router:
        router.post(f"{PAYMOB_BASE_URL}/auth/tokens").respond(503)

        resp = await async_client.post("/api/payment/create-intent", json={"amount": 150000, "bookingId": "BK1"})

    assert resp.status_code == 503
    detail = resp.json()["detail"]
    assert detail["message"] == "Payment service unavailable, please try again"
    assert detail["details"]["step"] == "authenticate"


@pytest.mark.anyio
async def test_create_intent_rejects_amount_below_minimum(async_client: httpx.AsyncClient) -> None:
    with respx.mock(assert_all_called=False) as router:
        route = router.post(f"{PAYMOB_BASE_URL}/auth/tokens").respond(200, json={"token": "auth_token_1"})

        resp = await async_client.post("/api/payment/create-intent", json={"amount": 99, "bookingId": "BK1"})

        assert not route.called

    assert resp.status_code == 400
    assert resp.json()["error_code"] == "validation_error"


@pytest.mark.anyio
async def test_create_intent_rejects_unsupported_currency(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.post(
        "/api/payment/create-intent",
        json={"amount": 150000, "currency": "JPY", "bookingId": "BK1"},
    )

    assert resp.status_code == 400
    assert "JPY" in resp.json()["message"]


@pytest.mark.anyio
async def test_create_intent_requires_booking_id(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.post("/api/payment/create-intent", json={"amount": 150000})

    assert resp.status_code == 422


@pytest.mark.anyio
async def test_callback_marks_payment_paid(
    async_client: httpx.AsyncClient, pending_payment: PaymentRecord, paid_recorder: PaidRecorder
) -> None:
    body, signature = signed_callback(make_transaction())

    resp = await async_client.post(f"/api/payment/callback?hmac={signature}", json=body)

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "received": True}

    status = await async_client.get(f"/api/payment/status/{ORDER_ID}")
    assert status.status_code == 200
    assert status.json()["data"]["status"] == "paid"
    assert status.json()["data"]["bookingId"] == "BK1"
    assert len(paid_recorder.records) == 1


@pytest.mark.anyio
async def test_callback_with_bad_signature_is_still_acknowledged(
    async_client: httpx.AsyncClient, pending_payment: PaymentRecord
) -> None:
    body, forged = signed_callback(make_transaction(), secret="forged_secret")

    resp = await async_client.post(f"/api/payment/callback?hmac={forged}", json=body)

    assert resp.status_code == 200
    assert resp.json() == {"success": False, "received": True}

    status = await async_client.get(f"/api/payment/status/{ORDER_ID}")
    assert status.json()["data"]["status"] == "pending"


@pytest.mark.anyio
async def test_callback_with_unreadable_body_is_acknowledged(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.post(
        "/api/payment/callback?hmac=deadbeef",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": False, "received": True}


@pytest.mark.anyio
async def test_redirect_success(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.get(
        "/api/payment/callback-redirect",
        params={"success": "true", "txn_response_code": "APPROVED", "order_id": ORDER_ID, "amount_cents": 15050},
    )

    assert resp.status_code == 302
    assert resp.headers["location"] == (
        f"http://localhost:3000/booking/confirmation?orderId={ORDER_ID}&status=success&amount=150.5"
    )


@pytest.mark.anyio
@pytest.mark.parametrize(
    "params",
    [
        {"success": "true", "txn_response_code": "DECLINED"},
        {"success": "false", "txn_response_code": "APPROVED"},
        {"success": "True", "txn_response_code": "APPROVED"},
    ],
)
async def test_redirect_failure(async_client: httpx.AsyncClient, params) -> None:
    resp = await async_client.get(
        "/api/payment/callback-redirect",
        params={**params, "order_id": ORDER_ID, "amount_cents": 15000},
    )

    assert resp.status_code == 302
    assert resp.headers["location"] == (
        f"http://localhost:3000/booking/confirmation?orderId={ORDER_ID}&status=failed"
    )


@pytest.mark.anyio
async def test_status_for_unknown_order(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.get("/api/payment/status/1234")

    assert resp.status_code == 404
    assert resp.json()["detail"]["error_code"] == "payment:not_found"


@pytest.mark.anyio
async def test_booking_payments_listing(
    async_client: httpx.AsyncClient, store: SqlAlchemyPaymentStore, pending_payment: PaymentRecord
) -> None:
    retry = await store.create("BK1", 150000, "EGP", ORDER_ID + 1)

    resp = await async_client.get("/api/payment/booking/BK1")

    data = resp.json()["data"]
    assert data["count"] == 2
    assert [p["paymentId"] for p in data["payments"]] == [retry.id, pending_payment.id]


@pytest.mark.anyio
async def test_status_update_rejects_illegal_transition(
    async_client: httpx.AsyncClient, store: SqlAlchemyPaymentStore, pending_payment: PaymentRecord
) -> None:
    await store.update_status(pending_payment.id, expected_status="pending", new_status="failed")

    resp = await async_client.post(
        "/api/payment/status/update",
        json={"bookingId": "BK1", "status": "paid", "additionalData": {}},
    )

    assert resp.status_code == 409
    assert resp.json()["error_code"] == "payment:status:illegal_transition"


@pytest.mark.anyio
async def test_status_update_applies_legal_transition(
    async_client: httpx.AsyncClient, pending_payment: PaymentRecord
) -> None:
    resp = await async_client.post(
        "/api/payment/status/update",
        json={"bookingId": "BK1", "status": "failed"},
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "failed"


@pytest.mark.anyio
async def test_refund_of_unknown_payment(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.post("/api/payment/refund", json={"paymentId": "pay_missing"})

    assert resp.status_code == 404
    assert resp.json()["error_code"] == "payment:not_found"


@pytest.mark.anyio
async def test_verify_settles_pending_payment(
    async_client: httpx.AsyncClient, pending_payment: PaymentRecord
) -> None:
    with respx.mock(assert_all_called=True) as router:
        router.post(f"{PAYMOB_BASE_URL}/auth/tokens").respond(200, json={"token": "auth_token_1"})
        router.get(f"{PAYMOB_BASE_URL}/acceptance/transactions/5550001").respond(200, json=make_transaction())

        resp = await async_client.get("/api/payment/verify/5550001")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["classification"] == "applied"
    assert data["payment"]["status"] == "paid"


@pytest.mark.anyio
async def test_public_config_hides_secrets(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.get("/api/payment/config")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["mode"] == "test"
    assert data["iframeId"] == IFRAME_ID
    assert data["minimumAmount"] == 100
    assert HMAC_SECRET not in resp.text
    assert "test_api_key" not in resp.text


@pytest.mark.anyio
async def test_payment_health(async_client: httpx.AsyncClient) -> None:
    resp = await async_client.get("/api/payment/health")

    body = resp.json()
    assert body["status"] == "healthy"
    assert body["configured"] is True
    assert body["authenticated"] is False
