import asyncio
import json

import httpx
import pytest

from services.external_service import ExternalServiceClient, render_order_confirmation
from services.notification_service import NotificationDispatcher

ORDER = {
    "id": 42,
    "user_id": "user_123",
    "items": [
        {"product_id": 1, "name": "Racing Frame", "quantity": 1, "price": 1050, "image": ""},
        {"product_id": 2, "name": "Brushless Motor", "quantity": 2, "price": 525, "image": ""},
    ],
    "customer_details": {"name": "Asha Rao", "email": "asha@example.com", "phone": "9876543210"},
    "shipping_address": {
        "fullName": "Asha Rao",
        "addressLine1": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
        "country": "India",
    },
    "billing_address": {},
    "subtotal": 2000,
    "tax": 100,
    "shipping": 99,
    "discount": 0,
    "total_amount": 2199,
    "order_status": "pending",
    "gateway_order_id": "XRF_1_ABC",
    "gateway_payment_id": "5114910",
    "tracking_url": None,
    "created_at": "2026-10-17T10:00:00",
}


class FlakyExternalService:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []

    async def _call(self, job, order):
        self.calls.append((job, order["id"]))
        if self.failures:
            self.failures -= 1
            raise httpx.ConnectError("provider down")

    async def send_order_confirmation(self, order):
        await self._call("email", order)

    async def create_shipment(self, order):
        await self._call("shipment", order)

    async def send_shipping_update(self, order):
        await self._call("shipping_email", order)


def run_dispatch(dispatcher, schedule):
    async def go():
        schedule()
        await dispatcher.drain()

    asyncio.run(go())


class TestNotificationDispatcher:
    def test_order_confirmed_sends_email_and_creates_shipment(self):
        external = FlakyExternalService()
        dispatcher = NotificationDispatcher(external, max_attempts=3, backoff_seconds=0)

        run_dispatch(dispatcher, lambda: dispatcher.order_confirmed(ORDER))

        assert sorted(external.calls) == [("email", 42), ("shipment", 42)]

    def test_order_shipped_sends_shipping_email(self):
        external = FlakyExternalService()
        dispatcher = NotificationDispatcher(external, max_attempts=3, backoff_seconds=0)

        run_dispatch(dispatcher, lambda: dispatcher.order_shipped(ORDER))

        assert external.calls == [("shipping_email", 42)]

    def test_failed_job_is_retried(self):
        external = FlakyExternalService(failures=2)
        dispatcher = NotificationDispatcher(external, max_attempts=3, backoff_seconds=0)

        run_dispatch(dispatcher, lambda: dispatcher.order_shipped(ORDER))

        assert len(external.calls) == 3

    def test_exhausted_job_is_logged_not_raised(self, caplog):
        external = FlakyExternalService(failures=10)
        dispatcher = NotificationDispatcher(external, max_attempts=2, backoff_seconds=0)

        run_dispatch(dispatcher, lambda: dispatcher.order_shipped(ORDER))

        assert len(external.calls) == 2
        assert "Dispatch job failed after retries" in caplog.text

    def test_scheduling_does_not_wait_for_the_job(self):
        started = []

        class SlowExternalService(FlakyExternalService):
            async def send_shipping_update(self, order):
                started.append(order["id"])
                await asyncio.sleep(0.05)

        dispatcher = NotificationDispatcher(SlowExternalService(), max_attempts=1, backoff_seconds=0)

        async def go():
            dispatcher.order_shipped(ORDER)
            assert started == []
            await dispatcher.drain()

        asyncio.run(go())
        assert started == [42]


def run_with_external(handler, call, **kwargs):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await call(ExternalServiceClient(http_client, **kwargs))

    return asyncio.run(go())


class TestExternalServiceClient:
    def test_email_is_skipped_when_not_configured(self):
        def handler(request):
            raise AssertionError("no request expected")

        result = run_with_external(
            handler,
            lambda client: client.send_order_confirmation(ORDER),
            mail_api_key="",
        )
        assert result is None

    def test_order_confirmation_email_is_sent(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "email_1"})

        result = run_with_external(
            handler,
            lambda client: client.send_order_confirmation(ORDER),
            mail_api_key="re_test",
        )

        assert result == {"id": "email_1"}
        assert seen["auth"] == "Bearer re_test"
        assert seen["body"]["to"] == ["asha@example.com"]
        assert "#42" in seen["body"]["subject"]
        assert "Racing Frame" in seen["body"]["html"]

    def test_email_provider_error_raises_for_retry(self):
        with pytest.raises(httpx.HTTPStatusError):
            run_with_external(
                lambda request: httpx.Response(503),
                lambda client: client.send_shipping_update(ORDER),
                mail_api_key="re_test",
            )

    def test_shipment_payload(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"shipment_id": 777})

        result = run_with_external(
            handler,
            lambda client: client.create_shipment(ORDER),
            shipping_api_token="ship_token",
        )

        assert result == {"shipment_id": 777}
        assert seen["path"].endswith("/orders/create/adhoc")
        assert seen["body"]["order_id"] == "42"
        assert seen["body"]["order_date"] == "2026-10-17"
        assert seen["body"]["billing_pincode"] == "560001"
        assert seen["body"]["billing_phone"] == "9876543210"
        assert [item["units"] for item in seen["body"]["order_items"]] == [1, 2]
        assert seen["body"]["sub_total"] == 2199

    def test_shipment_is_skipped_when_not_configured(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert run_with_external(
            handler,
            lambda client: client.create_shipment(ORDER),
            shipping_api_token="",
        ) is None


def test_confirmation_email_escapes_customer_input():
    order = dict(ORDER, customer_details={"name": "<script>x</script>", "email": "a@b.c"})
    assert "<script>" not in render_order_confirmation(order)
