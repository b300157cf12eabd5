import asyncio
import json

import httpx
import pytest

from exceptions import GatewayError, WebhookSignatureError
from services.payment_gateway import (
    PaymentGatewayClient,
    normalize_payment_method,
    require_webhook_signature,
    sign_webhook_payload,
    verify_webhook_signature,
)

SECRET = "test-secret"
BODY = b'{"type":"PAYMENT_SUCCESS_WEBHOOK","data":{"order":{"order_id":"XRF_1_ABC"}}}'


def run_with_gateway(handler, call):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            gateway = PaymentGatewayClient(
                http_client,
                base_url="https://pg.test/pg/",
                app_id="app-id",
                secret_key="app-secret",
                api_version="2023-08-01",
                timeout=2.0,
            )
            return await call(gateway)

    return asyncio.run(go())


class TestWebhookSignature:
    def test_valid_signature_is_accepted(self):
        signature = sign_webhook_payload(BODY, "1700000000", SECRET)
        assert verify_webhook_signature(BODY, "1700000000", signature, SECRET) is True

    def test_str_and_bytes_bodies_sign_identically(self):
        assert sign_webhook_payload(BODY.decode(), "1", SECRET) == sign_webhook_payload(BODY, "1", SECRET)

    def test_tampered_body_is_rejected(self):
        signature = sign_webhook_payload(BODY, "1700000000", SECRET)
        tampered = BODY.replace(b"XRF_1_ABC", b"XRF_9_EVIL")
        assert verify_webhook_signature(tampered, "1700000000", signature, SECRET) is False

    def test_changed_timestamp_is_rejected(self):
        signature = sign_webhook_payload(BODY, "1700000000", SECRET)
        assert verify_webhook_signature(BODY, "1700000001", signature, SECRET) is False

    def test_wrong_secret_is_rejected(self):
        signature = sign_webhook_payload(BODY, "1700000000", "other-secret")
        assert verify_webhook_signature(BODY, "1700000000", signature, SECRET) is False

    @pytest.mark.parametrize(
        "body, timestamp, signature, secret",
        [
            (BODY, None, "sig", SECRET),
            (BODY, "1700000000", None, SECRET),
            (b"", "1700000000", "sig", SECRET),
            (BODY, "1700000000", "sig", ""),
        ],
    )
    def test_missing_inputs_fail_verification(self, body, timestamp, signature, secret):
        assert verify_webhook_signature(body, timestamp, signature, secret) is False

    def test_require_raises_unauthorized_on_mismatch(self):
        with pytest.raises(WebhookSignatureError) as excinfo:
            require_webhook_signature(BODY, "1700000000", "bm90LWEtc2lnbmF0dXJl", SECRET)
        assert excinfo.value.status_code == 401

    def test_require_passes_a_valid_signature(self):
        signature = sign_webhook_payload(BODY, "1700000000", SECRET)
        assert require_webhook_signature(BODY, "1700000000", signature, SECRET) is None


@pytest.mark.parametrize(
    "group, method",
    [
        ("upi", "upi"),
        ("UPI_COLLECT", "upi"),
        ("credit_card", "card"),
        ("debit_card", "card"),
        ("net_banking", "netbanking"),
        ("wallet", "wallet"),
        ("pay_later", "online"),
        (None, "online"),
    ],
)
def test_normalize_payment_method(group, method):
    assert normalize_payment_method(group) == method


class TestCreateSession:
    def test_posts_order_and_returns_session(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"order_id": "XRF_1_ABC", "payment_session_id": "session_abc"})

        result = run_with_gateway(handler, lambda gateway: gateway.create_session(
            amount=2199,
            currency="INR",
            order_id="XRF_1_ABC",
            customer={"customer_id": "user_123", "customer_name": "Asha"},
            return_url="https://shop.test/payment-success?order_id={order_id}",
            notify_url="https://api.shop.test/webhook",
            note="2 items",
        ))

        assert result == {"order_id": "XRF_1_ABC", "payment_session_id": "session_abc"}
        assert seen["url"] == "https://pg.test/pg/orders"
        assert seen["headers"]["x-client-id"] == "app-id"
        assert seen["headers"]["x-client-secret"] == "app-secret"
        assert seen["headers"]["x-api-version"] == "2023-08-01"
        assert seen["body"]["order_amount"] == 2199
        assert seen["body"]["order_currency"] == "INR"
        assert seen["body"]["order_meta"]["notify_url"] == "https://api.shop.test/webhook"
        assert seen["body"]["order_note"] == "2 items"

    def test_provider_error_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(500, json={"message": "internal"})

        with pytest.raises(GatewayError):
            run_with_gateway(handler, lambda gateway: gateway.create_session(
                2199, "INR", "XRF_1_ABC", {}, "https://r", "https://n"
            ))

    def test_client_error_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(400, json={"message": "order_amount invalid"})

        with pytest.raises(GatewayError):
            run_with_gateway(handler, lambda gateway: gateway.create_session(
                -1, "INR", "XRF_1_ABC", {}, "https://r", "https://n"
            ))

    def test_timeout_raises_gateway_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GatewayError):
            run_with_gateway(handler, lambda gateway: gateway.create_session(
                2199, "INR", "XRF_1_ABC", {}, "https://r", "https://n"
            ))

    def test_missing_session_id_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(200, json={"order_id": "XRF_1_ABC"})

        with pytest.raises(GatewayError):
            run_with_gateway(handler, lambda gateway: gateway.create_session(
                2199, "INR", "XRF_1_ABC", {}, "https://r", "https://n"
            ))


class TestFetchPaymentStatus:
    def test_returns_attempts_most_recent_first(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/pg/orders/XRF_1_ABC/payments"
            return httpx.Response(200, json=[
                {"cf_payment_id": "1", "payment_status": "FAILED", "payment_time": "2026-10-17T10:00:00+05:30"},
                {"cf_payment_id": "2", "payment_status": "SUCCESS", "payment_time": "2026-10-17T10:05:00+05:30"},
            ])

        payments = run_with_gateway(handler, lambda gateway: gateway.fetch_payment_status("XRF_1_ABC"))

        assert [payment["cf_payment_id"] for payment in payments] == ["2", "1"]

    def test_keeps_gateway_order_without_timestamps(self):
        def handler(request):
            return httpx.Response(200, json=[
                {"cf_payment_id": "9", "payment_status": "SUCCESS"},
                {"cf_payment_id": "8", "payment_status": "FAILED"},
            ])

        payments = run_with_gateway(handler, lambda gateway: gateway.fetch_payment_status("XRF_1_ABC"))

        assert [payment["cf_payment_id"] for payment in payments] == ["9", "8"]

    def test_no_attempts_is_an_empty_list(self):
        payments = run_with_gateway(
            lambda request: httpx.Response(200, json=[]),
            lambda gateway: gateway.fetch_payment_status("XRF_1_ABC"),
        )
        assert payments == []

    def test_malformed_json_raises_gateway_error(self):
        with pytest.raises(GatewayError):
            run_with_gateway(
                lambda request: httpx.Response(200, content=b"<html>"),
                lambda gateway: gateway.fetch_payment_status("XRF_1_ABC"),
            )

    def test_connection_error_raises_gateway_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GatewayError):
            run_with_gateway(handler, lambda gateway: gateway.fetch_payment_status("XRF_1_ABC"))
