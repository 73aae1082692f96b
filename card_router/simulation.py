"""
Simulate signed issuing authorization webhooks against a running router.

    python -m card_router.simulation --url http://localhost:8000/v1/webhook

Each scenario posts an issuing_authorization.created event and checks which
category the router chose.
"""

import argparse
import asyncio
import json
import logging
import sys
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import httpx

from card_router.config import settings
from card_router.domain.signature import generate_header
from card_router.infrastructure.observability.logging import setup_logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scenario:
    name: str
    mcc: str
    merchant: str
    amount: int  # minor units
    expected_category: str


SCENARIOS: List[Scenario] = [
    Scenario("Coffee shop", "5812", "Starbucks #1234", 525, "dining"),
    Scenario("Airline ticket", "3000", "United Airlines", 45000, "travel"),
    Scenario("Gas station", "5541", "Shell #5678", 4500, "fuel"),
    Scenario("Groceries", "5411", "Whole Foods Market", 8750, "grocery"),
    Scenario("Online electronics", "5732", "Amazon.com", 2999, "online"),
    Scenario("Streaming subscription", "4899", "Netflix", 1599, "streaming"),
    Scenario("Unknown merchant", "9999", "Random Store", 1000, "default"),
]


def build_event(scenario: Scenario, authorization_id: str | None = None) -> Dict[str, Any]:
    """Issuer-shaped authorization event for a scenario"""
    return {
        "id": f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": "issuing_authorization.created",
        "data": {
            "object": {
                "id": authorization_id or f"iauth_{uuid.uuid4().hex[:24]}",
                "object": "issuing.authorization",
                "amount": scenario.amount,
                "currency": "usd",
                "merchant_data": {
                    "mcc": scenario.mcc,
                    "name": scenario.merchant,
                    "city": "San Francisco",
                    "state": "CA",
                    "country": "US",
                },
                "status": "pending",
            }
        },
    }


def sign_event(event: Dict[str, Any], secret: str) -> Tuple[bytes, str]:
    """Serialize an event and sign the exact bytes that will be sent"""
    body = json.dumps(event).encode("utf-8")
    return body, generate_header(body, secret)


async def run_scenarios(
    url: str,
    secret: str,
    header_name: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Post every scenario; returns the number whose category did not match"""
    mismatches = 0
    async with httpx.AsyncClient(timeout=5.0, transport=transport) as client:
        for index, scenario in enumerate(SCENARIOS, start=1):
            body, signature = sign_event(build_event(scenario), secret)
            try:
                response = await client.post(
                    url,
                    content=body,
                    headers={"Content-Type": "application/json", header_name: signature},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"[{index}] {scenario.name}: request failed: {e}")
                mismatches += 1
                continue

            result = response.json()
            matched = result.get("category") == scenario.expected_category
            if not matched:
                mismatches += 1
            logger.info(
                f"[{index}] {scenario.name}: {'OK' if matched else 'MISMATCH'}",
                extra={
                    "mcc": scenario.mcc,
                    "expected_category": scenario.expected_category,
                    "category": result.get("category"),
                    "routed_to": result.get("routed_to"),
                    "status": result.get("status"),
                },
            )
    return mismatches


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send signed test authorizations to the card router")
    parser.add_argument("--url", default="http://localhost:8000/v1/webhook")
    parser.add_argument("--secret", default=settings.webhook_secret)
    parser.add_argument("--header", default=settings.signature_header)
    args = parser.parse_args(argv)

    setup_logging("INFO")
    mismatches = asyncio.run(run_scenarios(args.url, args.secret, args.header))
    return 1 if mismatches else 0


if __name__ == "__main__":
    sys.exit(main())
