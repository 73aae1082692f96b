"""Settlement HTTP client: charges the selected real card for an authorization"""

import httpx
from typing import Any, Dict, Optional
from card_router.domain.models import Instrument, SettlementResult
from card_router.domain.exceptions import (
    SettlementRejected,
    SettlementTimeout,
    SettlementUnavailable,
)
from card_router.config import settings


class SettlementAdapter:
    """
    Client for the settlement provider's payment intent API.

    One call per authorization: no retries and no idempotency key, so a
    failed call is reported once rather than re-attempted.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.settlement_api_base
        self.api_key = api_key or settings.settlement_api_key
        self.timeout = timeout or settings.settlement_timeout_seconds
        self.transport = transport

    async def settle(
        self,
        amount: int,
        currency: str,
        instrument: Instrument,
        merchant_name: str,
        authorization_id: Optional[str] = None,
    ) -> SettlementResult:
        """
        Create and confirm a payment intent against the instrument.

        Raises:
            SettlementTimeout: the call did not complete in time
            SettlementRejected: the card issuer declined the charge
            SettlementUnavailable: provider error or unusable response
        """
        form: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "payment_method": instrument.opaque_token,
            "confirm": "true",
            "off_session": "true",
            "description": merchant_name,
        }
        if authorization_id:
            form["metadata[authorization_id]"] = authorization_id

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/v1/payment_intents",
                    data=form,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                if 400 <= response.status_code < 500:
                    raise _rejection_from(response)
                response.raise_for_status()
                data = response.json()

                status = data["status"]
                if status != "succeeded":
                    raise SettlementRejected(
                        f"Payment intent {data.get('id')} ended in status {status}",
                        decline_code=status,
                    )
                return SettlementResult(settlement_id=data["id"])

            except httpx.TimeoutException as e:
                raise SettlementTimeout(f"Settlement timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise SettlementUnavailable(f"Settlement API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise SettlementUnavailable(f"Settlement API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise SettlementUnavailable(f"Invalid settlement response: {e}") from e


def _rejection_from(response: httpx.Response) -> SettlementRejected:
    """Turn a 4xx card error body into a SettlementRejected with its decline code"""
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        error = {}
    decline_code = error.get("decline_code") or error.get("code")
    message = error.get("message") or f"Settlement rejected: {response.status_code}"
    return SettlementRejected(message, decline_code=decline_code)
