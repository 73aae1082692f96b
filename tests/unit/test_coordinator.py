"""Unit tests for the authorization coordinator state machine"""

import asyncio
import time
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock
from sqlalchemy.orm import Session
from prometheus_client import REGISTRY
from card_router.domain.coordinator import APPROVAL_FAILED, DUPLICATE_SETTLEMENT, AuthorizationCoordinator
from card_router.domain.exceptions import (
    PersistenceError,
    ResolutionError,
    SettlementRejected,
    SettlementTimeout,
    SettlementUnavailable,
)
from card_router.domain.models import (
    FinalStatus,
    RoutingCategory,
    RoutingDecision,
    SettlementOutcome,
    SettlementResult,
)
from card_router.infrastructure.database.models import RoutingDecisionRecord
from conftest import make_event


async def test_settled_and_approved(coordinator, settlement, issuer, db: Session):
    outcome = await coordinator.authorize(make_event(mcc="5812", amount=525))
    decision = outcome.decision

    assert outcome.recorded is True
    assert outcome.duplicate is False
    assert decision.category == RoutingCategory.DINING
    assert decision.selected_instrument_id == "chase_sapphire"
    assert decision.settlement_outcome == SettlementOutcome.SUCCEEDED
    assert decision.final_status == FinalStatus.APPROVED
    assert decision.settlement_id == "pi_test_123"
    assert decision.needs_reconciliation is False

    settlement.settle.assert_awaited_once()
    args, kwargs = settlement.settle.call_args
    assert args[0] == 525
    assert args[1] == "usd"
    assert args[2].instrument_id == "chase_sapphire"
    assert kwargs["authorization_id"] == "iauth_test_1"
    issuer.approve.assert_awaited_once_with("iauth_test_1")
    issuer.decline.assert_not_awaited()

    assert db.query(RoutingDecisionRecord).count() == 1


async def test_travel_routes_to_travel_card(coordinator, settlement):
    outcome = await coordinator.authorize(make_event(mcc="3000", amount=45000))

    assert outcome.decision.category == RoutingCategory.TRAVEL
    assert outcome.decision.selected_instrument_id == "amex_platinum"
    assert settlement.settle.call_args.args[0] == 45000


async def test_rejected_settlement_declines_with_reason(coordinator, settlement, issuer):
    settlement.settle.side_effect = SettlementRejected("Your card has insufficient funds.", decline_code="insufficient_funds")

    outcome = await coordinator.authorize(make_event())
    decision = outcome.decision

    assert decision.settlement_outcome == SettlementOutcome.FAILED
    assert decision.final_status == FinalStatus.DECLINED
    assert decision.decline_reason == "insufficient_funds"
    assert decision.needs_reconciliation is False
    assert decision.upstream_acknowledged is True
    issuer.approve.assert_not_awaited()
    issuer.decline.assert_awaited_once_with("iauth_test_1", "insufficient_funds")


async def test_rejection_without_code_uses_default_reason(coordinator, settlement, issuer):
    settlement.settle.side_effect = SettlementRejected("declined")

    outcome = await coordinator.authorize(make_event())

    assert outcome.decision.decline_reason == "insufficient_funds"


async def test_unavailable_settlement_declines(coordinator, settlement, issuer):
    settlement.settle.side_effect = SettlementUnavailable("503")

    outcome = await coordinator.authorize(make_event())

    assert outcome.decision.final_status == FinalStatus.DECLINED
    assert outcome.decision.decline_reason == "settlement_unavailable"
    issuer.decline.assert_awaited_once_with("iauth_test_1", "settlement_unavailable")


async def test_unexpected_settlement_exception_is_contained(coordinator, settlement, issuer):
    settlement.settle.side_effect = RuntimeError("boom")

    outcome = await coordinator.authorize(make_event())

    assert outcome.decision.final_status == FinalStatus.DECLINED
    assert outcome.decision.settlement_outcome == SettlementOutcome.FAILED
    assert outcome.recorded is True


async def test_adapter_timeout_declines_and_flags_reconciliation(coordinator, settlement, issuer):
    settlement.settle.side_effect = SettlementTimeout("timed out")

    outcome = await coordinator.authorize(make_event())

    assert outcome.decision.final_status == FinalStatus.DECLINED
    assert outcome.decision.decline_reason == "settlement_timeout"
    assert outcome.decision.needs_reconciliation is True
    issuer.decline.assert_awaited_once_with("iauth_test_1", "settlement_timeout")


async def test_slow_settlement_declines_within_budget(selector, issuer, decision_log):
    async def hang(*args, **kwargs):
        await asyncio.sleep(10)

    slow = AsyncMock()
    slow.settle.side_effect = hang
    coordinator = AuthorizationCoordinator(
        selector=selector,
        settlement=slow,
        issuer=issuer,
        decision_log=decision_log,
        settlement_timeout=0.1,
    )

    start = time.monotonic()
    outcome = await coordinator.authorize(make_event())
    elapsed = time.monotonic() - start

    assert outcome.decision.final_status == FinalStatus.DECLINED
    assert outcome.decision.decline_reason == "settlement_timeout"
    assert elapsed < 0.1 + 0.5


async def test_approval_failure_compensates_with_decline(coordinator, issuer, db: Session):
    issuer.approve.side_effect = ResolutionError("issuer 500")

    outcome = await coordinator.authorize(make_event())
    decision = outcome.decision

    assert decision.settlement_outcome == SettlementOutcome.SUCCEEDED
    assert decision.final_status == FinalStatus.DECLINED
    assert decision.needs_reconciliation is True
    assert decision.settlement_id == "pi_test_123"
    assert decision.decline_reason == APPROVAL_FAILED
    assert decision.upstream_acknowledged is True
    issuer.decline.assert_awaited_once_with("iauth_test_1", APPROVAL_FAILED)

    record = db.query(RoutingDecisionRecord).one()
    assert record.needs_reconciliation is True
    assert record.settlement_outcome == "succeeded"
    assert record.final_status == "declined"


async def test_approval_and_compensation_both_fail(coordinator, issuer, db: Session):
    issuer.approve.side_effect = ResolutionError("issuer down")
    issuer.decline.side_effect = ResolutionError("issuer down")

    outcome = await coordinator.authorize(make_event())

    assert outcome.decision.final_status == FinalStatus.DECLINED
    assert outcome.decision.needs_reconciliation is True
    assert outcome.decision.upstream_acknowledged is False
    assert outcome.recorded is True
    assert db.query(RoutingDecisionRecord).one().upstream_acknowledged is False


async def test_failed_decline_still_records_reason(coordinator, settlement, issuer, db: Session):
    settlement.settle.side_effect = SettlementRejected("no", decline_code="do_not_honor")
    issuer.decline.side_effect = ResolutionError("timeout")

    outcome = await coordinator.authorize(make_event())

    assert outcome.decision.final_status == FinalStatus.DECLINED
    assert outcome.decision.decline_reason == "do_not_honor"
    assert outcome.decision.upstream_acknowledged is False
    assert db.query(RoutingDecisionRecord).one().decline_reason == "do_not_honor"


async def test_unexpected_issuer_exception_is_resolution_error(coordinator, issuer):
    issuer.approve.side_effect = ConnectionResetError("reset")

    outcome = await coordinator.authorize(make_event())

    assert outcome.decision.final_status == FinalStatus.DECLINED
    assert outcome.decision.needs_reconciliation is True


async def test_slow_approval_bounded_by_resolution_timeout(selector, settlement, decision_log):
    async def hang(*args, **kwargs):
        await asyncio.sleep(10)

    issuer = AsyncMock()
    issuer.approve.side_effect = hang
    coordinator = AuthorizationCoordinator(
        selector=selector,
        settlement=settlement,
        issuer=issuer,
        decision_log=decision_log,
        settlement_timeout=0.5,
        resolution_timeout=0.1,
    )

    start = time.monotonic()
    outcome = await coordinator.authorize(make_event())

    assert time.monotonic() - start < 1.0
    assert outcome.decision.final_status == FinalStatus.DECLINED
    assert outcome.decision.needs_reconciliation is True


async def test_persistence_failure_does_not_block_resolution(selector, settlement, issuer):
    broken_log = AsyncMock()
    broken_log.find.return_value = None
    broken_log.append.side_effect = PersistenceError("disk full")
    coordinator = AuthorizationCoordinator(
        selector=selector,
        settlement=settlement,
        issuer=issuer,
        decision_log=broken_log,
        settlement_timeout=0.5,
    )

    outcome = await coordinator.authorize(make_event())

    assert outcome.recorded is False
    assert outcome.decision.final_status == FinalStatus.APPROVED
    issuer.approve.assert_awaited_once()


async def test_lookup_failure_still_routes(selector, settlement, issuer):
    log = AsyncMock()
    log.find.side_effect = PersistenceError("db down")
    log.append.return_value = None
    coordinator = AuthorizationCoordinator(
        selector=selector,
        settlement=settlement,
        issuer=issuer,
        decision_log=log,
        settlement_timeout=0.5,
    )

    outcome = await coordinator.authorize(make_event())

    assert outcome.recorded is True
    assert outcome.decision.final_status == FinalStatus.APPROVED


async def test_duplicate_delivery_does_not_settle_twice(coordinator, settlement, issuer, db: Session):
    first = await coordinator.authorize(make_event())
    second = await coordinator.authorize(make_event())

    assert first.recorded is True
    assert second.duplicate is True
    assert second.recorded is False
    assert second.decision.final_status == first.decision.final_status
    assert settlement.settle.await_count == 1
    assert issuer.approve.await_count == 1
    assert db.query(RoutingDecisionRecord).count() == 1


def duplicate_settlement_flags() -> float:
    return REGISTRY.get_sample_value(
        "card_router_reconciliation_flags_total", {"reason": DUPLICATE_SETTLEMENT}
    ) or 0.0


async def test_concurrent_duplicates_commit_one_decision(coordinator, settlement, db: Session):
    before = duplicate_settlement_flags()
    outcomes = await asyncio.gather(
        coordinator.authorize(make_event()),
        coordinator.authorize(make_event()),
    )

    winner = next(o for o in outcomes if o.recorded)
    loser = next(o for o in outcomes if not o.recorded)
    assert loser.duplicate is True
    assert db.query(RoutingDecisionRecord).count() == 1

    # Both deliveries settled, so the second charge is flagged
    assert settlement.settle.await_count == 2
    assert duplicate_settlement_flags() == before + 1

    # Both responses describe the committed decision
    assert loser.decision.authorization_id == winner.decision.authorization_id
    assert loser.decision.final_status == winner.decision.final_status
    assert loser.decision.settlement_id == winner.decision.settlement_id


async def test_lost_race_after_failed_settlement_is_not_flagged(coordinator, settlement, db: Session):
    settlement.settle.side_effect = SettlementRejected("insufficient funds", decline_code="insufficient_funds")

    before = duplicate_settlement_flags()
    outcomes = await asyncio.gather(
        coordinator.authorize(make_event()),
        coordinator.authorize(make_event()),
    )

    assert sum(1 for o in outcomes if o.recorded) == 1
    assert duplicate_settlement_flags() == before
    assert all(o.decision.final_status == FinalStatus.DECLINED for o in outcomes)


async def test_distinct_authorizations_share_slots(selector, settlement, issuer, decision_log, db: Session):
    coordinator = AuthorizationCoordinator(
        selector=selector,
        settlement=settlement,
        issuer=issuer,
        decision_log=decision_log,
        settlement_timeout=0.5,
        slots=asyncio.Semaphore(2),
    )

    outcomes = await asyncio.gather(
        *(coordinator.authorize(make_event(authorization_id=f"iauth_{i}")) for i in range(5))
    )

    assert all(o.recorded for o in outcomes)
    assert db.query(RoutingDecisionRecord).count() == 5


async def test_reload_between_decisions_uses_new_snapshot(coordinator, selector):
    from card_router.domain.instruments import InstrumentMap

    selector.swap(InstrumentMap.from_mapping({"default": {"instrument_id": "only_card", "token": "tok"}}))

    outcome = await coordinator.authorize(make_event(mcc="5812"))

    assert outcome.decision.category == RoutingCategory.DINING
    assert outcome.decision.selected_instrument_id == "only_card"


def test_approved_decision_requires_succeeded_settlement():
    with pytest.raises(ValueError):
        RoutingDecision(
            authorization_id="iauth_x",
            amount=100,
            currency="usd",
            merchant_category_code="5812",
            merchant_name="Cafe",
            category=RoutingCategory.DINING,
            selected_instrument_id="chase_sapphire",
            settlement_outcome=SettlementOutcome.FAILED,
            final_status=FinalStatus.APPROVED,
            decided_at=datetime.now(timezone.utc),
        )
