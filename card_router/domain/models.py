"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class RoutingCategory(str, Enum):
    """Spend category derived from a merchant category code"""

    DINING = "dining"
    TRAVEL = "travel"
    FUEL = "fuel"
    GROCERY = "grocery"
    ONLINE = "online"
    STREAMING = "streaming"
    DEFAULT = "default"


class SettlementOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FinalStatus(str, Enum):
    APPROVED = "approved"
    DECLINED = "declined"


@dataclass(frozen=True)
class AuthorizationEvent:
    """Real-time authorization request from the issuing network"""

    event_id: str
    authorization_id: str
    amount: int  # minor units
    currency: str
    merchant_category_code: Optional[str]
    merchant_name: str
    received_at: datetime


@dataclass(frozen=True)
class Instrument:
    """Tokenized reference to a real payment card"""

    instrument_id: str
    opaque_token: str


@dataclass(frozen=True)
class SettlementResult:
    """Successful funds movement against an instrument"""

    settlement_id: str


@dataclass(frozen=True)
class RoutingDecision:
    """
    Durable record of one authorization's routing and outcome.

    final_status == APPROVED implies settlement_outcome == SUCCEEDED. The
    reverse does not hold: a settled charge whose approval could not be
    confirmed upstream is DECLINED with needs_reconciliation set.
    """

    authorization_id: str
    amount: int
    currency: str
    merchant_category_code: Optional[str]
    merchant_name: str
    category: RoutingCategory
    selected_instrument_id: str
    settlement_outcome: SettlementOutcome
    final_status: FinalStatus
    decided_at: datetime
    settlement_id: Optional[str] = None
    decline_reason: Optional[str] = None
    needs_reconciliation: bool = False
    upstream_acknowledged: bool = True

    def __post_init__(self):
        if (
            self.final_status == FinalStatus.APPROVED
            and self.settlement_outcome != SettlementOutcome.SUCCEEDED
        ):
            raise ValueError("approved decision requires a succeeded settlement")
