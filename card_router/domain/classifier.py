"""Merchant category code -> routing category"""

import logging
from typing import Callable, List, Optional, Tuple

from card_router.domain.exceptions import ClassificationAmbiguous
from card_router.domain.models import RoutingCategory

logger = logging.getLogger(__name__)


def _codes(*codes: int) -> Callable[[int], bool]:
    allowed = frozenset(codes)
    return lambda mcc: mcc in allowed


def _between(low: int, high: int) -> Callable[[int], bool]:
    return lambda mcc: low <= mcc <= high


# Evaluated in order, first match wins. Exact-code rules listed ahead of the
# travel range keep their precedence if the range is ever widened.
RULES: List[Tuple[Callable[[int], bool], RoutingCategory]] = [
    (_codes(5812, 5813, 5814), RoutingCategory.DINING),
    (_between(3000, 3999), RoutingCategory.TRAVEL),
    (_codes(5541, 5542), RoutingCategory.FUEL),
    (_codes(5411), RoutingCategory.GROCERY),
    (_codes(5732, 5734), RoutingCategory.ONLINE),
    (_codes(4899, 5815), RoutingCategory.STREAMING),
]


def parse_mcc(mcc: Optional[str]) -> Optional[int]:
    """Parse an MCC string to an int, or None if absent/malformed"""
    if mcc is None:
        return None
    text = str(mcc).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


def classify(mcc: Optional[str]) -> RoutingCategory:
    """
    Map a merchant category code to a routing category.

    Comparisons are numeric, never lexicographic. Absent or malformed codes
    fall through to DEFAULT; this function never raises.
    """
    code = parse_mcc(mcc)
    if code is None:
        return RoutingCategory.DEFAULT

    try:
        for matches, category in RULES:
            if matches(code):
                return category
    except ClassificationAmbiguous:
        logger.warning("Ambiguous MCC, routing to default", extra={"mcc": mcc})

    return RoutingCategory.DEFAULT
