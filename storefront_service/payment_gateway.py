"""Adapter for the external payment processor (Stripe PaymentIntents REST API).

Every call goes through a circuit breaker. A failing processor is reported
as `PaymentGatewayError` and is never retried here.
"""

import logging
from functools import lru_cache

import httpx
import pybreaker

from .config import get_settings
from .exceptions import PaymentGatewayError
from .schema import PaymentAuthorization

logger = logging.getLogger(__name__)


def authorization_id_from_handle(client_handle: str) -> str:
    # Client secrets look like "pi_3Nx..._secret_Ab12..."; the id is the prefix.
    authorization_id, sep, _ = client_handle.partition("_secret_")
    if not sep or not authorization_id:
        raise PaymentGatewayError("Malformed payment client handle.")
    return authorization_id


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("message") or response.text
    except ValueError:
        return response.text


class StripePaymentGateway:
    def __init__(self, client: httpx.Client, breaker: pybreaker.CircuitBreaker | None = None) -> None:
        self.client = client
        self.breaker = breaker or pybreaker.CircuitBreaker(fail_max=5, reset_timeout=60)

    def close(self) -> None:
        self.client.close()

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = self.client.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    def _call(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = self.breaker.call(self._send, method, url, **kwargs)
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error("Payment processor rejected %s %s (HTTP %s): %s", method, url, e.response.status_code, message)
            raise PaymentGatewayError(message) from e
        except httpx.RequestError as e:
            logger.exception("Payment processor is unreachable: %s", e)
            raise PaymentGatewayError(f"Payment processor is unreachable: {e}") from e
        except pybreaker.CircuitBreakerError as e:
            logger.warning("Payment circuit breaker is open, refusing %s %s", method, url)
            raise PaymentGatewayError("Payment processor is temporarily unavailable.") from e
        return response.json()

    def create_authorization(self, amount_minor: int, currency: str, user_id: str) -> PaymentAuthorization:
        data = self._call(
            "POST",
            "/v1/payment_intents",
            data={
                "amount": amount_minor,
                "currency": currency,
                "automatic_payment_methods[enabled]": "true",
                "metadata[userId]": user_id,
            },
        )
        authorization = self._to_authorization(data)
        logger.info(
            "Created payment authorization %s for %d %s",
            authorization.id,
            authorization.amount,
            authorization.currency,
        )
        return authorization

    def retrieve_status(self, client_handle: str) -> PaymentAuthorization:
        authorization_id = authorization_id_from_handle(client_handle)
        data = self._call("GET", f"/v1/payment_intents/{authorization_id}")
        return self._to_authorization(data)

    @staticmethod
    def _to_authorization(data: dict) -> PaymentAuthorization:
        last_error = data.get("last_payment_error") or {}
        metadata = data.get("metadata") or {}
        return PaymentAuthorization(
            id=data["id"],
            amount=data["amount"],
            currency=data["currency"],
            status=data["status"],
            client_handle=data.get("client_secret"),
            failure_message=last_error.get("message"),
            owner_id=metadata.get("userId"),
        )


@lru_cache
def get_payment_gateway() -> StripePaymentGateway:
    settings = get_settings()
    client = httpx.Client(
        base_url=settings.PAYMENT_GATEWAY_BASE_URL,
        headers={"Authorization": f"Bearer {settings.PAYMENT_GATEWAY_SECRET_KEY}"},
        timeout=httpx.Timeout(5.0, read=10.0),
    )
    return StripePaymentGateway(client)
