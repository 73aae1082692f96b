"""Pydantic schemas for webhook parsing and API responses"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from card_router.domain.coordinator import AuthorizationOutcome
from card_router.domain.exceptions import MalformedEvent
from card_router.domain.models import AuthorizationEvent, RoutingDecision

AUTHORIZATION_EVENT_TYPES = frozenset(
    {"issuing_authorization.created", "issuing_authorization.request"}
)
TRANSACTION_FINALIZED_EVENT_TYPE = "issuing_transaction.created"
UNKNOWN_MERCHANT = "Unknown Merchant"


class MerchantData(BaseModel):
    """merchant_data block of an issuing authorization"""

    model_config = ConfigDict(extra="ignore")

    mcc: Optional[str] = None
    name: Optional[str] = None

    @field_validator("mcc", "name", mode="before")
    @classmethod
    def stringify(cls, value: Any) -> Optional[str]:
        # A malformed MCC must still classify (as default), never fail parsing
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)


class AuthorizationObject(BaseModel):
    """data.object of an authorization event"""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0, description="Amount in minor units")
    currency: str = Field(..., min_length=3, max_length=3)
    merchant_data: Optional[MerchantData] = None

    @field_validator("merchant_data", mode="before")
    @classmethod
    def drop_unusable_merchant_data(cls, value: Any) -> Any:
        # Missing merchant details route to the default card
        return value if isinstance(value, dict) else None


class WebhookEnvelope(BaseModel):
    """Top-level issuer event"""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    type: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)


def parse_authorization_event(event: Dict[str, Any]) -> AuthorizationEvent:
    """
    Build an AuthorizationEvent from a verified webhook body.

    Raises:
        MalformedEvent: if data.object lacks an id, amount or currency
    """
    try:
        envelope = WebhookEnvelope.model_validate(event)
        obj = AuthorizationObject.model_validate(envelope.data.get("object"))
    except ValidationError as e:
        raise MalformedEvent(f"Malformed authorization event: {e.error_count()} error(s)") from e

    merchant = obj.merchant_data or MerchantData()
    return AuthorizationEvent(
        event_id=envelope.id,
        authorization_id=obj.id,
        amount=obj.amount,
        currency=obj.currency.lower(),
        merchant_category_code=merchant.mcc,
        merchant_name=merchant.name or UNKNOWN_MERCHANT,
        received_at=datetime.now(timezone.utc),
    )


class WebhookResponse(BaseModel):
    """
    Response for POST /v1/webhook.

    HTTP 200 is returned for approvals and declines alike; read `status`.
    """

    success: bool
    received: bool = True
    routed_to: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    settlement_id: Optional[str] = None
    needs_reconciliation: Optional[bool] = None
    duplicate: Optional[bool] = None

    @classmethod
    def from_outcome(cls, outcome: AuthorizationOutcome) -> "WebhookResponse":
        decision = outcome.decision
        return cls(
            success=True,
            routed_to=decision.selected_instrument_id,
            category=decision.category.value,
            status=decision.final_status.value,
            settlement_id=decision.settlement_id,
            needs_reconciliation=decision.needs_reconciliation,
            duplicate=outcome.duplicate,
        )


class DecisionItem(BaseModel):
    """Single routing decision"""

    authorization_id: str
    amount: int
    currency: str
    merchant_category_code: Optional[str] = None
    merchant_name: str
    category: str
    routed_to: str
    settlement_outcome: str
    settlement_id: Optional[str] = None
    final_status: str
    decline_reason: Optional[str] = None
    needs_reconciliation: bool
    upstream_acknowledged: bool
    decided_at: str

    @classmethod
    def from_decision(cls, decision: RoutingDecision) -> "DecisionItem":
        return cls(
            authorization_id=decision.authorization_id,
            amount=decision.amount,
            currency=decision.currency,
            merchant_category_code=decision.merchant_category_code,
            merchant_name=decision.merchant_name,
            category=decision.category.value,
            routed_to=decision.selected_instrument_id,
            settlement_outcome=decision.settlement_outcome.value,
            settlement_id=decision.settlement_id,
            final_status=decision.final_status.value,
            decline_reason=decision.decline_reason,
            needs_reconciliation=decision.needs_reconciliation,
            upstream_acknowledged=decision.upstream_acknowledged,
            decided_at=decision.decided_at.isoformat(),
        )


class DecisionListResponse(BaseModel):
    """Response for GET /v1/decisions"""

    decisions: List[DecisionItem]


class InstrumentsResponse(BaseModel):
    """Category -> instrument id (tokens are never exposed)"""

    instruments: Dict[str, str]
