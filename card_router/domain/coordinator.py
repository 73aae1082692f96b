"""
Authorization coordinator - routes one authorization to a real card and
resolves it upstream exactly once.

Per authorization:

    received -> classified -> settling
        -> settled -> approving -> approved
        -> settle_failed -> declining -> declined
        -> settled -> approve_failed -> declining -> declined

Settlement and resolution failures never escape this module; they become a
terminal decision that is written to the Decision Log.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from card_router.domain.classifier import classify
from card_router.domain.exceptions import (
    DuplicateDecision,
    PersistenceError,
    ResolutionError,
    SettlementError,
    SettlementRejected,
    SettlementTimeout,
    SettlementUnavailable,
)
from card_router.domain.instruments import InstrumentSelector
from card_router.domain.models import (
    AuthorizationEvent,
    FinalStatus,
    Instrument,
    RoutingCategory,
    RoutingDecision,
    SettlementOutcome,
    SettlementResult,
)
from card_router.infrastructure.observability.logging import log_decision
from card_router.infrastructure.observability.metrics import (
    decision_log_duplicate_counter,
    decision_log_failure_counter,
    reconciliation_counter,
    record_decision,
    resolution_failure_counter,
    settlement_failure_counter,
    settlement_latency_histogram,
)

logger = logging.getLogger(__name__)

APPROVAL_FAILED = "approval_failed"
DUPLICATE_SETTLEMENT = "duplicate_settlement"


class Settlement(Protocol):
    async def settle(
        self,
        amount: int,
        currency: str,
        instrument: Instrument,
        merchant_name: str,
        authorization_id: Optional[str] = None,
    ) -> SettlementResult: ...


class Issuer(Protocol):
    async def approve(self, authorization_id: str) -> None: ...

    async def decline(self, authorization_id: str, reason: str) -> None: ...


class DecisionStore(Protocol):
    async def append(self, decision: RoutingDecision) -> None: ...

    async def find(self, authorization_id: str) -> Optional[RoutingDecision]: ...


@dataclass(frozen=True)
class AuthorizationOutcome:
    """What the coordinator decided, and whether it was durably recorded"""

    decision: RoutingDecision
    recorded: bool
    duplicate: bool = False


class AuthorizationCoordinator:
    def __init__(
        self,
        selector: InstrumentSelector,
        settlement: Settlement,
        issuer: Issuer,
        decision_log: DecisionStore,
        settlement_timeout: float,
        resolution_timeout: Optional[float] = None,
        slots: Optional[asyncio.Semaphore] = None,
    ):
        self.selector = selector
        self.settlement = settlement
        self.issuer = issuer
        self.decision_log = decision_log
        self.settlement_timeout = settlement_timeout
        self.resolution_timeout = resolution_timeout
        self.slots = slots

    async def authorize(self, event: AuthorizationEvent) -> AuthorizationOutcome:
        """Run one authorization to a terminal state. Never raises for settlement or issuer failures."""
        async with self.slots if self.slots is not None else contextlib.nullcontext():
            return await self._authorize(event)

    async def _authorize(self, event: AuthorizationEvent) -> AuthorizationOutcome:
        start_time = time.monotonic()
        authorization_id = event.authorization_id

        prior = await self._prior_decision(authorization_id)
        if prior is not None:
            logger.warning(
                "Duplicate authorization delivery, returning recorded decision",
                extra={"authorization_id": authorization_id, "step": "duplicate"},
            )
            return AuthorizationOutcome(decision=prior, recorded=False, duplicate=True)

        category = classify(event.merchant_category_code)
        instrument = self.selector.snapshot().select(category)
        logger.info(
            "Authorization classified",
            extra={
                "authorization_id": authorization_id,
                "step": "classified",
                "mcc": event.merchant_category_code,
                "category": category.value,
                "instrument_id": instrument.instrument_id,
                "amount": event.amount,
                "currency": event.currency,
            },
        )

        try:
            result = await self._settle(event, instrument)
        except SettlementError as e:
            decision = await self._decline_unsettled(event, category, instrument, e)
        else:
            decision = await self._approve_settled(event, category, instrument, result)

        recorded, duplicate = await self._record(decision)
        if duplicate:
            decision = await self._lost_race(decision)

        duration_ms = (time.monotonic() - start_time) * 1000
        record_decision(decision.final_status.value, category.value, instrument.instrument_id)
        log_decision(
            authorization_id,
            category.value,
            instrument.instrument_id,
            decision.final_status.value,
            decision.settlement_outcome.value,
            decision.needs_reconciliation,
            duration_ms,
        )
        return AuthorizationOutcome(decision=decision, recorded=recorded, duplicate=duplicate)

    async def _prior_decision(self, authorization_id: str) -> Optional[RoutingDecision]:
        try:
            return await self.decision_log.find(authorization_id)
        except PersistenceError as e:
            # The uniqueness constraint still guards the write
            logger.error(
                f"Decision Log lookup failed: {e}",
                extra={"authorization_id": authorization_id, "step": "duplicate_check"},
            )
            return None

    async def _settle(self, event: AuthorizationEvent, instrument: Instrument) -> SettlementResult:
        """
        Single bounded settlement attempt.

        Raises:
            SettlementError: every failure mode, including unexpected ones
        """
        logger.info(
            "Settling authorization",
            extra={"authorization_id": event.authorization_id, "step": "settling"},
        )
        try:
            with settlement_latency_histogram.time():
                return await asyncio.wait_for(
                    self.settlement.settle(
                        event.amount,
                        event.currency,
                        instrument,
                        event.merchant_name,
                        authorization_id=event.authorization_id,
                    ),
                    timeout=self.settlement_timeout,
                )
        except asyncio.TimeoutError as e:
            raise SettlementTimeout(f"Settlement exceeded {self.settlement_timeout}s budget") from e
        except SettlementError:
            raise
        except Exception as e:
            logger.exception(
                "Unexpected settlement failure",
                extra={"authorization_id": event.authorization_id, "step": "settling"},
            )
            raise SettlementUnavailable(f"Unexpected settlement failure: {e}") from e

    async def _decline_unsettled(
        self,
        event: AuthorizationEvent,
        category: RoutingCategory,
        instrument: Instrument,
        error: SettlementError,
    ) -> RoutingDecision:
        settlement_failure_counter.labels(kind=error.kind).inc()
        reason = error.reason
        if isinstance(error, SettlementRejected) and error.decline_code:
            reason = error.decline_code

        # A timeout leaves the real charge in an unknown state
        needs_reconciliation = isinstance(error, SettlementTimeout)
        log = logger.error if needs_reconciliation else logger.warning
        log(
            f"Settlement failed: {error}",
            extra={
                "authorization_id": event.authorization_id,
                "step": "settle_failed",
                "settlement_kind": error.kind,
                "decline_reason": reason,
            },
        )
        if needs_reconciliation:
            reconciliation_counter.labels(reason=error.reason).inc()

        acknowledged = await self._decline(event.authorization_id, reason)
        return self._decision(
            event,
            category,
            instrument,
            SettlementOutcome.FAILED,
            FinalStatus.DECLINED,
            decline_reason=reason,
            needs_reconciliation=needs_reconciliation,
            upstream_acknowledged=acknowledged,
        )

    async def _approve_settled(
        self,
        event: AuthorizationEvent,
        category: RoutingCategory,
        instrument: Instrument,
        result: SettlementResult,
    ) -> RoutingDecision:
        authorization_id = event.authorization_id
        logger.info(
            "Settlement succeeded, approving",
            extra={
                "authorization_id": authorization_id,
                "step": "approving",
                "settlement_id": result.settlement_id,
            },
        )
        try:
            await self._call_issuer("approve", self.issuer.approve, authorization_id)
        except ResolutionError as e:
            # Funds have moved but the network has not confirmed approval.
            # Decline upstream and leave the charge for manual reconciliation.
            resolution_failure_counter.labels(action="approve").inc()
            reconciliation_counter.labels(reason=APPROVAL_FAILED).inc()
            logger.error(
                f"Approval failed after settlement: {e}",
                extra={
                    "authorization_id": authorization_id,
                    "step": "approve_failed",
                    "settlement_id": result.settlement_id,
                    "instrument_id": instrument.instrument_id,
                },
            )
            acknowledged = await self._decline(authorization_id, APPROVAL_FAILED)
            return self._decision(
                event,
                category,
                instrument,
                SettlementOutcome.SUCCEEDED,
                FinalStatus.DECLINED,
                settlement_id=result.settlement_id,
                decline_reason=APPROVAL_FAILED,
                needs_reconciliation=True,
                upstream_acknowledged=acknowledged,
            )

        return self._decision(
            event,
            category,
            instrument,
            SettlementOutcome.SUCCEEDED,
            FinalStatus.APPROVED,
            settlement_id=result.settlement_id,
        )

    async def _decline(self, authorization_id: str, reason: str) -> bool:
        """Attempt the upstream decline once; returns whether the network accepted it"""
        try:
            await self._call_issuer("decline", self.issuer.decline, authorization_id, reason)
        except ResolutionError as e:
            resolution_failure_counter.labels(action="decline").inc()
            logger.error(
                f"Decline failed, needs manual follow-up: {e}",
                extra={
                    "authorization_id": authorization_id,
                    "step": "declining",
                    "decline_reason": reason,
                },
            )
            return False
        return True

    async def _call_issuer(self, action: str, method, *args) -> None:
        """
        Raises:
            ResolutionError: every failure mode of the issuer call
        """
        try:
            if self.resolution_timeout is None:
                await method(*args)
            else:
                await asyncio.wait_for(method(*args), timeout=self.resolution_timeout)
        except asyncio.TimeoutError as e:
            raise ResolutionError(f"Issuer {action} exceeded {self.resolution_timeout}s budget") from e
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(f"Unexpected issuer {action} failure: {e}") from e

    async def _record(self, decision: RoutingDecision) -> tuple[bool, bool]:
        """Append to the Decision Log. Returns (recorded, duplicate); never raises PersistenceError."""
        try:
            await self.decision_log.append(decision)
        except DuplicateDecision as e:
            decision_log_duplicate_counter.inc()
            logger.warning(
                str(e),
                extra={"authorization_id": decision.authorization_id, "step": "record"},
            )
            return False, True
        except PersistenceError as e:
            decision_log_failure_counter.inc()
            logger.error(
                f"Decision Log write failed: {e}",
                extra={
                    "authorization_id": decision.authorization_id,
                    "step": "record",
                    "final_status": decision.final_status.value,
                    "needs_reconciliation": decision.needs_reconciliation,
                },
            )
            return False, False
        return True, False

    async def _lost_race(self, decision: RoutingDecision) -> RoutingDecision:
        """
        A concurrent delivery committed first. Flag a second charge and answer
        with the committed decision so both deliveries report the same result.
        """
        if decision.settlement_outcome == SettlementOutcome.SUCCEEDED:
            reconciliation_counter.labels(reason=DUPLICATE_SETTLEMENT).inc()
            logger.error(
                "Concurrent delivery settled a second time, needs reconciliation",
                extra={
                    "authorization_id": decision.authorization_id,
                    "step": "record",
                    "settlement_id": decision.settlement_id,
                    "instrument_id": decision.selected_instrument_id,
                    "final_status": decision.final_status.value,
                },
            )
        committed = await self._prior_decision(decision.authorization_id)
        return committed if committed is not None else decision

    @staticmethod
    def _decision(
        event: AuthorizationEvent,
        category: RoutingCategory,
        instrument: Instrument,
        settlement_outcome: SettlementOutcome,
        final_status: FinalStatus,
        settlement_id: Optional[str] = None,
        decline_reason: Optional[str] = None,
        needs_reconciliation: bool = False,
        upstream_acknowledged: bool = True,
    ) -> RoutingDecision:
        return RoutingDecision(
            authorization_id=event.authorization_id,
            amount=event.amount,
            currency=event.currency,
            merchant_category_code=event.merchant_category_code,
            merchant_name=event.merchant_name,
            category=category,
            selected_instrument_id=instrument.instrument_id,
            settlement_outcome=settlement_outcome,
            final_status=final_status,
            decided_at=datetime.now(timezone.utc),
            settlement_id=settlement_id,
            decline_reason=decline_reason,
            needs_reconciliation=needs_reconciliation,
            upstream_acknowledged=upstream_acknowledged,
        )
