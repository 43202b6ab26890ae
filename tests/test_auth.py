from datetime import timedelta

import pytest

from storefront_service.auth import create_access_token, verify_token
from storefront_service.exceptions import Unauthenticated


def test_verify_token_yields_identity() -> None:
    user = verify_token(create_access_token("abc123"))
    assert user.id == "abc123"


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_verify_token_rejects_missing_or_garbage(token) -> None:
    with pytest.raises(Unauthenticated):
        verify_token(token)


def test_verify_token_rejects_expired() -> None:
    token = create_access_token("abc123", expires_in=timedelta(seconds=-5))
    with pytest.raises(Unauthenticated):
        verify_token(token)


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("get", "/cart"),
        ("get", "/orders"),
        ("post", "/payment-authorizations"),
        ("post", "/checkout/reconcile"),
    ],
)
def test_endpoints_require_bearer_token(client, method, path) -> None:
    response = getattr(client, method)(path)
    assert response.status_code == 401
    assert response.json()["detail"] == "No token provided."


def test_invalid_token_is_rejected(client) -> None:
    response = client.get("/cart", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token."


def test_valid_token_is_accepted(client, auth_headers) -> None:
    response = client.get("/cart", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["lines"] == []
