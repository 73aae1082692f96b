"""Issuing network client: approves or declines the original authorization"""

import httpx
from typing import Any, Dict, Optional
from card_router.config import settings
from card_router.domain.exceptions import ResolutionError


class IssuerClient:
    """
    Client for the issuing network's authorization endpoints.

    Both calls are keyed by authorization id and are idempotent upstream for a
    repeated identical outcome.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.issuer_api_base
        self.api_key = api_key or settings.issuer_api_key
        self.timeout = timeout or settings.resolution_timeout_seconds
        self.transport = transport

    async def approve(self, authorization_id: str) -> None:
        await self._resolve(authorization_id, "approve")

    async def decline(self, authorization_id: str, reason: str) -> None:
        await self._resolve(authorization_id, "decline", {"metadata[decline_reason]": reason})

    async def _resolve(
        self,
        authorization_id: str,
        action: str,
        form: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Raises:
            ResolutionError: on timeout, HTTP errors, or network failure
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/v1/issuing/authorizations/{authorization_id}/{action}",
                    data=form or {},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()

            except httpx.TimeoutException as e:
                raise ResolutionError(f"Issuer {action} timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ResolutionError(f"Issuer {action} error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ResolutionError(f"Issuer {action} unreachable: {e}") from e
