from urllib.parse import parse_qs

import httpx
import pybreaker
import pytest

from storefront_service.exceptions import PaymentGatewayError
from storefront_service.payment_gateway import StripePaymentGateway, authorization_id_from_handle


def _gateway(handler, breaker=None) -> StripePaymentGateway:
    client = httpx.Client(base_url="http://processor.test", transport=httpx.MockTransport(handler))
    return StripePaymentGateway(client, breaker=breaker)


def _intent(**overrides) -> dict:
    intent = {
        "id": "pi_123",
        "amount": 50000,
        "currency": "inr",
        "status": "requires_payment_method",
        "client_secret": "pi_123_secret_xyz",
        "last_payment_error": None,
        "metadata": {"userId": "user-1"},
    }
    intent.update(overrides)
    return intent


def test_create_authorization_posts_form_encoded_intent() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json=_intent())

    authorization = _gateway(handler).create_authorization(50000, "inr", "user-1")

    assert seen["method"] == "POST"
    assert seen["path"] == "/v1/payment_intents"
    assert seen["form"] == {
        "amount": ["50000"],
        "currency": ["inr"],
        "automatic_payment_methods[enabled]": ["true"],
        "metadata[userId]": ["user-1"],
    }
    assert authorization.id == "pi_123"
    assert authorization.amount == 50000
    assert authorization.client_handle == "pi_123_secret_xyz"
    assert authorization.owner_id == "user-1"


def test_retrieve_status_uses_id_from_client_handle() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/v1/payment_intents/pi_123"
        return httpx.Response(
            200,
            json=_intent(status="requires_payment_method", last_payment_error={"message": "Card declined."}),
        )

    authorization = _gateway(handler).retrieve_status("pi_123_secret_xyz")

    assert authorization.status == "requires_payment_method"
    assert authorization.failure_message == "Card declined."


def test_processor_error_message_is_surfaced() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "Amount must be at least ₹0.50 inr"}})

    with pytest.raises(PaymentGatewayError, match="Amount must be at least"):
        _gateway(handler).create_authorization(10, "inr", "user-1")


def test_transport_error_becomes_gateway_error() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentGatewayError, match="unreachable"):
        _gateway(handler).create_authorization(100, "inr", "user-1")
    assert len(calls) == 1


def test_open_breaker_short_circuits_calls() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500, json={"error": {"message": "boom"}})

    gateway = _gateway(handler, breaker=pybreaker.CircuitBreaker(fail_max=2, reset_timeout=60))

    for _ in range(2):
        with pytest.raises(PaymentGatewayError):
            gateway.create_authorization(100, "inr", "user-1")

    with pytest.raises(PaymentGatewayError, match="temporarily unavailable"):
        gateway.create_authorization(100, "inr", "user-1")
    assert len(calls) == 2


@pytest.mark.parametrize("handle", ["pi_123", "_secret_abc", ""])
def test_malformed_client_handle(handle) -> None:
    with pytest.raises(PaymentGatewayError):
        authorization_id_from_handle(handle)


def test_retrieve_status_without_metadata_has_no_owner() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_intent(status="succeeded", metadata={}))

    authorization = _gateway(handler).retrieve_status("pi_123_secret_xyz")

    assert authorization.status == "succeeded"
    assert authorization.owner_id is None
