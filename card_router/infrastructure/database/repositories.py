"""Data access layer for routing decisions"""

import asyncio
import logging
from typing import Callable, List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from card_router.infrastructure.database.models import RoutingDecisionRecord
from card_router.domain.exceptions import DuplicateDecision, PersistenceError
from card_router.domain.models import (
    FinalStatus,
    RoutingCategory,
    RoutingDecision,
    SettlementOutcome,
)

logger = logging.getLogger(__name__)


class DecisionRepository:
    """Repository for routing decisions"""

    def __init__(self, db: Session):
        self.db = db

    def create_decision(self, decision: RoutingDecision) -> RoutingDecisionRecord:
        """Stage a decision row; the unique authorization_id is enforced on flush"""
        record = RoutingDecisionRecord(
            authorization_id=decision.authorization_id,
            amount=decision.amount,
            currency=decision.currency,
            merchant_category_code=decision.merchant_category_code,
            merchant_name=decision.merchant_name,
            category=decision.category.value,
            selected_instrument_id=decision.selected_instrument_id,
            settlement_outcome=decision.settlement_outcome.value,
            settlement_id=decision.settlement_id,
            final_status=decision.final_status.value,
            decline_reason=decision.decline_reason,
            needs_reconciliation=decision.needs_reconciliation,
            upstream_acknowledged=decision.upstream_acknowledged,
            decided_at=decision.decided_at,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def get_by_authorization_id(self, authorization_id: str) -> Optional[RoutingDecisionRecord]:
        return (
            self.db.query(RoutingDecisionRecord)
            .filter(RoutingDecisionRecord.authorization_id == authorization_id)
            .first()
        )

    def list_recent(self, limit: int = 50) -> List[RoutingDecisionRecord]:
        """Fetch the most recent decisions"""
        return (
            self.db.query(RoutingDecisionRecord)
            .order_by(RoutingDecisionRecord.decided_at.desc())
            .limit(limit)
            .all()
        )

    def list_needing_reconciliation(self, limit: int = 50) -> List[RoutingDecisionRecord]:
        """Decisions where funds may have moved without upstream confirmation"""
        return (
            self.db.query(RoutingDecisionRecord)
            .filter(RoutingDecisionRecord.needs_reconciliation.is_(True))
            .order_by(RoutingDecisionRecord.decided_at.desc())
            .limit(limit)
            .all()
        )


def to_domain(record: RoutingDecisionRecord) -> RoutingDecision:
    return RoutingDecision(
        authorization_id=record.authorization_id,
        amount=record.amount,
        currency=record.currency,
        merchant_category_code=record.merchant_category_code,
        merchant_name=record.merchant_name,
        category=RoutingCategory(record.category),
        selected_instrument_id=record.selected_instrument_id,
        settlement_outcome=SettlementOutcome(record.settlement_outcome),
        final_status=FinalStatus(record.final_status),
        decided_at=record.decided_at,
        settlement_id=record.settlement_id,
        decline_reason=record.decline_reason,
        needs_reconciliation=record.needs_reconciliation,
        upstream_acknowledged=record.upstream_acknowledged,
    )


class DecisionLog:
    """
    Durable append-only Decision Log.

    Each call opens its own session and runs in a worker thread, so concurrent
    authorizations never share a session or block the event loop.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def append(self, decision: RoutingDecision) -> None:
        """
        Raises:
            DuplicateDecision: a decision for this authorization_id already exists
            PersistenceError: any other database failure
        """
        await asyncio.to_thread(self._append, decision)

    async def find(self, authorization_id: str) -> Optional[RoutingDecision]:
        """
        Raises:
            PersistenceError: on database failure
        """
        return await asyncio.to_thread(self._find, authorization_id)

    def _append(self, decision: RoutingDecision) -> None:
        db = self.session_factory()
        try:
            DecisionRepository(db).create_decision(decision)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise DuplicateDecision(
                f"Decision for {decision.authorization_id} already recorded"
            ) from e
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Decision Log write failed: {e}") from e
        finally:
            db.close()

    def _find(self, authorization_id: str) -> Optional[RoutingDecision]:
        db = self.session_factory()
        try:
            record = DecisionRepository(db).get_by_authorization_id(authorization_id)
            return to_domain(record) if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Decision Log read failed: {e}") from e
        finally:
            db.close()
