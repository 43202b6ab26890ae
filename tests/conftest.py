from collections.abc import Iterator
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront_service.auth import create_access_token
from storefront_service.database import Base, get_db
from storefront_service.exceptions import PaymentGatewayError
from storefront_service.main import app
from storefront_service.payment_gateway import authorization_id_from_handle, get_payment_gateway
from storefront_service.redis_client import get_redis_client
from storefront_service.schema import PaymentAuthorization
from storefront_service.session_state import SessionState


class FakeRedis:
    """Just enough of redis.Redis for the session store."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed


class FakePaymentGateway:
    """In-memory processor; tests flip authorization status with `set_status`."""

    def __init__(self) -> None:
        self.authorizations: dict[str, PaymentAuthorization] = {}
        self.create_calls: list[tuple[int, str]] = []
        self.retrieve_calls: list[str] = []
        self.fail_create = False
        self.fail_retrieve = False
        self._ids = count(1)

    def create_authorization(self, amount_minor: int, currency: str, user_id: str) -> PaymentAuthorization:
        self.create_calls.append((amount_minor, currency))
        if self.fail_create:
            raise PaymentGatewayError("Your card was declined.")
        authorization_id = f"pi_test_{next(self._ids)}"
        authorization = PaymentAuthorization(
            id=authorization_id,
            amount=amount_minor,
            currency=currency,
            status="requires_payment_method",
            client_handle=f"{authorization_id}_secret_abc123",
            owner_id=user_id,
        )
        self.authorizations[authorization_id] = authorization
        return authorization

    def retrieve_status(self, client_handle: str) -> PaymentAuthorization:
        self.retrieve_calls.append(client_handle)
        if self.fail_retrieve:
            raise PaymentGatewayError("Payment processor is unreachable.")
        authorization_id = authorization_id_from_handle(client_handle)
        if authorization_id not in self.authorizations:
            raise PaymentGatewayError(f"No such payment_intent: '{authorization_id}'")
        return self.authorizations[authorization_id]

    def set_status(self, authorization_id: str, status: str, failure_message: str | None = None) -> None:
        authorization = self.authorizations[authorization_id]
        self.authorizations[authorization_id] = authorization.model_copy(
            update={"status": status, "failure_message": failure_message},
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Iterator[Session]:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def session_state(fake_redis) -> SessionState:
    return SessionState(fake_redis, "user-1", ttl_seconds=3600)


@pytest.fixture
def client(db_session, fake_redis, fake_gateway) -> Iterator[TestClient]:
    def _get_db_override() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_redis_client] = lambda: fake_redis
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('user-1')}"}


@pytest.fixture
def other_auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('user-2')}"}
