"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from card_router.config import Settings
from card_router.domain.coordinator import AuthorizationCoordinator
from card_router.domain.instruments import InstrumentSelector
from card_router.domain.signature import SignatureVerifier
from card_router.infrastructure.clients.issuer import IssuerClient
from card_router.infrastructure.clients.settlement import SettlementAdapter
from card_router.infrastructure.database.repositories import DecisionLog
from card_router.infrastructure.database.session import SessionLocal


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with"""
    return request.app.state.settings


def get_signature_verifier(app_settings: Settings = Depends(get_app_settings)) -> SignatureVerifier:
    """Provide webhook signature verifier"""
    return SignatureVerifier(app_settings.webhook_secret, app_settings.signature_tolerance_seconds)


def get_settlement_adapter(app_settings: Settings = Depends(get_app_settings)) -> SettlementAdapter:
    """Provide settlement API client instance"""
    return SettlementAdapter(
        base_url=app_settings.settlement_api_base,
        api_key=app_settings.settlement_api_key,
        timeout=app_settings.settlement_timeout_seconds,
    )


def get_issuer_client(app_settings: Settings = Depends(get_app_settings)) -> IssuerClient:
    """Provide issuing network client instance"""
    return IssuerClient(
        base_url=app_settings.issuer_api_base,
        api_key=app_settings.issuer_api_key,
        timeout=app_settings.resolution_timeout_seconds,
    )


def get_decision_log() -> DecisionLog:
    """Provide Decision Log backed by the shared session factory"""
    return DecisionLog(SessionLocal)


def get_instrument_selector(request: Request) -> InstrumentSelector:
    """Process-wide instrument selector created at startup"""
    return request.app.state.instrument_selector


def get_coordinator(
    request: Request,
    app_settings: Settings = Depends(get_app_settings),
    selector: InstrumentSelector = Depends(get_instrument_selector),
    settlement: SettlementAdapter = Depends(get_settlement_adapter),
    issuer: IssuerClient = Depends(get_issuer_client),
    decision_log: DecisionLog = Depends(get_decision_log),
) -> AuthorizationCoordinator:
    """Per-request coordinator sharing the app-wide concurrency slots"""
    return AuthorizationCoordinator(
        selector=selector,
        settlement=settlement,
        issuer=issuer,
        decision_log=decision_log,
        settlement_timeout=app_settings.settlement_timeout_seconds,
        resolution_timeout=app_settings.resolution_timeout_seconds,
        slots=request.app.state.authorization_slots,
    )
