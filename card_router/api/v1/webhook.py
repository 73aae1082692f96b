"""POST /v1/webhook - issuing network authorization webhook"""

import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from card_router.api.v1.schemas import (
    AUTHORIZATION_EVENT_TYPES,
    TRANSACTION_FINALIZED_EVENT_TYPE,
    WebhookResponse,
    parse_authorization_event,
)
from card_router.api.dependencies import (
    get_app_settings,
    get_coordinator,
    get_request_id,
    get_signature_verifier,
)
from card_router.config import Settings
from card_router.domain.coordinator import AuthorizationCoordinator
from card_router.domain.exceptions import InvalidSignature, MalformedEvent
from card_router.domain.signature import SignatureVerifier
from card_router.infrastructure.observability.metrics import webhook_rejection_counter

router = APIRouter()
logger = logging.getLogger(__name__)

# Strong references to running authorizations so a dropped caller cannot
# leave a task to be garbage collected mid-resolution
_in_flight: set = set()


@router.post("/webhook", response_model=WebhookResponse, response_model_exclude_none=True)
async def receive_webhook(
    request: Request,
    app_settings: Settings = Depends(get_app_settings),
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    coordinator: AuthorizationCoordinator = Depends(get_coordinator),
):
    """
    Verify, route and resolve an issuing network event.

    Flow:
    1. Verify the signature over the raw body (400 on failure, nothing recorded)
    2. Authorization events: classify, settle, approve/decline, record
    3. Finalized transaction events: log only
    4. Return the decision; approved and declined are both HTTP 200
    """
    request_id = get_request_id(request)
    payload = await request.body()

    try:
        event = verifier.construct_event(payload, request.headers.get(app_settings.signature_header))
    except InvalidSignature as e:
        webhook_rejection_counter.labels(reason="signature").inc()
        logger.warning(f"Webhook signature verification failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_type = event.get("type")

    if event_type in AUTHORIZATION_EVENT_TYPES:
        try:
            authorization = parse_authorization_event(event)
        except MalformedEvent as e:
            webhook_rejection_counter.labels(reason="malformed").inc()
            logger.warning(str(e), extra={"request_id": request_id, "event_type": event_type})
            raise HTTPException(status_code=400, detail=str(e))

        logger.info(
            "Authorization received",
            extra={
                "request_id": request_id,
                "event_id": authorization.event_id,
                "authorization_id": authorization.authorization_id,
                "step": "received",
            },
        )

        # Resolution must finish even if the caller disconnects
        task = asyncio.ensure_future(coordinator.authorize(authorization))
        _in_flight.add(task)
        task.add_done_callback(_in_flight.discard)
        outcome = await asyncio.shield(task)
        return WebhookResponse.from_outcome(outcome)

    if event_type == TRANSACTION_FINALIZED_EVENT_TYPE:
        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            obj = {}
        logger.info(
            "Transaction finalized",
            extra={
                "request_id": request_id,
                "transaction_id": obj.get("id"),
                "authorization_id": obj.get("authorization"),
                "amount": obj.get("amount"),
                "currency": obj.get("currency"),
            },
        )
        return WebhookResponse(success=True)

    logger.info("Ignoring unhandled event type", extra={"request_id": request_id, "event_type": event_type})
    return WebhookResponse(success=True)
