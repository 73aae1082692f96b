"""GET /v1/decisions - Decision Log queries"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from card_router.api.v1.schemas import DecisionItem, DecisionListResponse
from card_router.infrastructure.database.session import get_db
from card_router.infrastructure.database.repositories import DecisionRepository, to_domain

router = APIRouter()


@router.get("/decisions", response_model=DecisionListResponse)
def list_decisions(
    limit: int = Query(50, ge=1, le=500, description="Maximum decisions to return"),
    db: Session = Depends(get_db),
):
    """
    Retrieve the most recent routing decisions.

    Returns:
        Decisions newest first, with routed card and final status
    """
    records = DecisionRepository(db).list_recent(limit=limit)
    return DecisionListResponse(decisions=[DecisionItem.from_decision(to_domain(r)) for r in records])


@router.get("/decisions/reconciliation", response_model=DecisionListResponse)
def list_reconciliation(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Decisions where a charge may exist without upstream confirmation"""
    records = DecisionRepository(db).list_needing_reconciliation(limit=limit)
    return DecisionListResponse(decisions=[DecisionItem.from_decision(to_domain(r)) for r in records])


@router.get("/decisions/{authorization_id}", response_model=DecisionItem)
def get_decision(authorization_id: str, db: Session = Depends(get_db)):
    record = DecisionRepository(db).get_by_authorization_id(authorization_id)

    if not record:
        raise HTTPException(status_code=404, detail="Decision not found")

    return DecisionItem.from_decision(to_domain(record))
