"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timezone
from typing import Any, Dict, Generator
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from card_router.api.main import create_app
from card_router.api.dependencies import get_decision_log, get_issuer_client, get_settlement_adapter
from card_router.config import DEFAULT_INSTRUMENTS, settings
from card_router.domain.coordinator import AuthorizationCoordinator
from card_router.domain.instruments import InstrumentMap, InstrumentSelector
from card_router.domain.models import AuthorizationEvent, SettlementResult
from card_router.infrastructure.database.models import Base
from card_router.infrastructure.database.repositories import DecisionLog
from card_router.infrastructure.database.session import get_db
from card_router.simulation import sign_event


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def decision_log(db: Session) -> DecisionLog:
    """Decision Log writing to the test database"""
    return DecisionLog(TestingSessionLocal)


@pytest.fixture
def settlement() -> AsyncMock:
    """Settlement adapter that succeeds unless a test says otherwise"""
    mock = AsyncMock()
    mock.settle.return_value = SettlementResult(settlement_id="pi_test_123")
    return mock


@pytest.fixture
def issuer() -> AsyncMock:
    """Issuer client that accepts every approve/decline"""
    mock = AsyncMock()
    mock.approve.return_value = None
    mock.decline.return_value = None
    return mock


@pytest.fixture
def selector() -> InstrumentSelector:
    return InstrumentSelector(InstrumentMap.from_mapping(DEFAULT_INSTRUMENTS))


@pytest.fixture
def coordinator(
    selector: InstrumentSelector,
    settlement: AsyncMock,
    issuer: AsyncMock,
    decision_log: DecisionLog,
) -> AuthorizationCoordinator:
    return AuthorizationCoordinator(
        selector=selector,
        settlement=settlement,
        issuer=issuer,
        decision_log=decision_log,
        settlement_timeout=0.5,
        resolution_timeout=0.5,
    )


@pytest.fixture
def client(db: Session, decision_log: DecisionLog, settlement: AsyncMock, issuer: AsyncMock) -> TestClient:
    """Create FastAPI test client with test database and mocked card networks"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_decision_log] = lambda: decision_log
    app.dependency_overrides[get_settlement_adapter] = lambda: settlement
    app.dependency_overrides[get_issuer_client] = lambda: issuer
    return TestClient(app)


def make_event(
    authorization_id: str = "iauth_test_1",
    mcc: str | None = "5812",
    amount: int = 525,
    merchant_name: str = "Starbucks #1234",
) -> AuthorizationEvent:
    return AuthorizationEvent(
        event_id="evt_test_1",
        authorization_id=authorization_id,
        amount=amount,
        currency="usd",
        merchant_category_code=mcc,
        merchant_name=merchant_name,
        received_at=datetime.now(timezone.utc),
    )


def authorization_payload(
    authorization_id: str = "iauth_test_1",
    mcc: Any = "5812",
    amount: int = 525,
    merchant_name: str = "Starbucks #1234",
    event_type: str = "issuing_authorization.created",
) -> Dict[str, Any]:
    return {
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": authorization_id,
                "object": "issuing.authorization",
                "amount": amount,
                "currency": "usd",
                "merchant_data": {"mcc": mcc, "name": merchant_name},
            }
        },
    }


def post_signed(client: TestClient, event: Dict[str, Any], secret: str | None = None):
    """POST an event to the webhook with a valid signature header"""
    body, header = sign_event(event, secret or settings.webhook_secret)
    return client.post(
        "/v1/webhook",
        content=body,
        headers={"Content-Type": "application/json", settings.signature_header: header},
    )
