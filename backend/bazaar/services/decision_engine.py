"""
Decision detection and feasibility checking.

WHAT: Classify a negotiation message and test a proposed price against both sides' limits
WHY: The negotiation loop terminates on these two pure functions alone
HOW: Regex keyword sets with fixed precedence, currency-adjacent price extraction,
     and an asymmetric budget/tolerance check

Keyword sets overlap in real agent text ("I accept 14 HBAR, how about delivery?"), so
classification always resolves in this order:

    price_agreed > accepted > rejected > counter_offer > none

Rejection phrases are limited to refusals that end the negotiation ("no deal",
"not interested", "I decline"). Refusing one specific offer ("I can't accept 10 HBAR")
or apologising ("sorry") does not count; such messages fall through to counter_offer
or none and the loop keeps going. An acceptance phrase preceded by a negation in the
same clause ("we haven't agreed", "nothing is agreed until", "not a deal!") is not an
acceptance.
"""

import enum
import re
from dataclasses import dataclass
from typing import Optional

from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class DecisionType(str, enum.Enum):
    """Message classification, in precedence order."""
    PRICE_AGREED = "price_agreed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTER_OFFER = "counter_offer"
    NONE = "none"


@dataclass(frozen=True)
class Decision:
    """Result of classifying one message."""
    decision_type: DecisionType
    price: Optional[float] = None
    matched_phrase: Optional[str] = None

    @property
    def is_acceptance(self) -> bool:
        return self.decision_type in (DecisionType.PRICE_AGREED, DecisionType.ACCEPTED)


@dataclass(frozen=True)
class FeasibilityResult:
    """Outcome of a feasibility check; truthy when both sides' constraints hold."""
    feasible: bool
    reason: str

    def __bool__(self) -> bool:
        return self.feasible


ACCEPTANCE_PATTERNS = [
    re.compile(r"\bi (?:will |can |gladly |happily |hereby )?accept\b"),
    re.compile(r"\b(?:offer|price|terms) (?:is )?accepted\b"),
    re.compile(r"\bit'?s a deal\b"),
    re.compile(r"\b(?:we|you) (?:have|got) a deal\b"),
    re.compile(r"\bdeal\s*!"),
    re.compile(r"(?:^|[.!?]\s+)deal\s*\."),
    re.compile(r"\bagreed\b"),
    re.compile(r"(?:^|[.!?]\s+)sold\s*[!.]"),
]

REJECTION_PATTERNS = [
    re.compile(r"\bi (?:must |have to |will |respectfully )?(?:reject|decline)\b"),
    re.compile(r"\bnot interested\b"),
    re.compile(r"\bno deal\b"),
    re.compile(r"\bwalk(?:ing)? away\b"),
    re.compile(r"\b(?:end|close) (?:the|this|our) negotiation\b"),
    re.compile(r"\bwe (?:can't|cannot|won't) (?:reach|make) a deal\b"),
]

COUNTER_OFFER_PATTERNS = [
    re.compile(r"\bhow about\b"),
    re.compile(r"\bcounter(?:[- ]?offer)?\b"),
    re.compile(r"\bwould you (?:consider|take|accept|do)\b"),
    re.compile(r"\bmeet (?:me )?in the middle\b"),
    re.compile(r"\bcan you do\b"),
    re.compile(r"\bi (?:can|could) (?:offer|do|pay|go)\b"),
    re.compile(r"\bi(?:'d| would) (?:offer|pay|propose)\b"),
    re.compile(r"\bi propose\b"),
    re.compile(r"\bmy (?:best|final|new) (?:offer|price)\b"),
]

_NEGATION = re.compile(r"n't\b|\b(?:not|no|never|nothing|until|cannot)\b")

# Clause ends at punctuation followed by whitespace, so "12.5" and "1,200" stay whole
_CLAUSE = re.compile(r".+?(?:[.!?;,]+(?=\s|$)|$)")

_NUMBER = r"\d[\d,]*(?:\.\d+)?"


def _first_match(patterns: list[re.Pattern], text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(0).strip()
    return None


def _acceptance_phrase(text: str) -> Optional[str]:
    """First acceptance phrase not preceded by a negation within its clause."""
    for clause in _CLAUSE.findall(text):
        clause = clause.strip()
        for pattern in ACCEPTANCE_PATTERNS:
            match = pattern.search(clause)
            if match and not _NEGATION.search(clause[:match.start()]):
                return match.group(0).strip()
    return None


def extract_price(text: str, currency_unit: str | None = None) -> Optional[float]:
    """
    Extract the first price written next to the currency unit.

    WHAT: "14 HBAR", "14.5HBAR", "HBAR 14" and "1,200 hbar" all yield a number
    WHY: Bare numbers (quantities, listing ids, rounds) must not be read as prices
    HOW: One regex for number-then-unit or unit-then-number; earliest match wins

    Args:
        text: Message text
        currency_unit: Unit token (defaults to settings.CURRENCY_UNIT)

    Returns:
        Price as float, or None if no unit-adjacent number exists
    """
    if not text:
        return None

    unit = re.escape(currency_unit or settings.CURRENCY_UNIT)
    pattern = re.compile(
        rf"(?P<before>{_NUMBER})\s*{unit}\b|\b{unit}\s*(?P<after>{_NUMBER})",
        re.IGNORECASE,
    )
    match = pattern.search(text)
    if not match:
        return None

    raw = (match.group("before") or match.group("after")).replace(",", "")
    try:
        return float(raw)
    except ValueError:
        logger.debug(f"Unparseable price token: {raw}")
        return None


def detect_decision(text: str, currency_unit: str | None = None) -> Decision:
    """
    Classify a message as price_agreed / accepted / rejected / counter_offer / none.

    WHAT: Keyword-set classification with precedence resolution
    WHY: Either party's message may end the negotiation
    HOW: Acceptance is checked first; with a unit-adjacent price it becomes price_agreed.
         Rejection beats counter-offer. Any extracted price is carried on the result.

    Args:
        text: Message text
        currency_unit: Unit token for price extraction

    Returns:
        Decision with type, extracted price (if any) and the phrase that decided it
    """
    if not text or not text.strip():
        return Decision(DecisionType.NONE)

    normalized = " ".join(text.lower().replace("’", "'").split())
    price = extract_price(text, currency_unit)

    phrase = _acceptance_phrase(normalized)
    if phrase:
        if price is not None:
            return Decision(DecisionType.PRICE_AGREED, price, phrase)
        return Decision(DecisionType.ACCEPTED, None, phrase)

    phrase = _first_match(REJECTION_PATTERNS, normalized)
    if phrase:
        return Decision(DecisionType.REJECTED, price, phrase)

    phrase = _first_match(COUNTER_OFFER_PATTERNS, normalized)
    if phrase:
        return Decision(DecisionType.COUNTER_OFFER, price, phrase)

    return Decision(DecisionType.NONE, price)


def check_feasibility(
    price: float,
    min_price: float,
    max_price: float,
    base_price: float,
    expected_price: float,
    *,
    tolerance: float | None = None,
) -> FeasibilityResult:
    """
    Check a proposed price against buyer budget and seller band.

    WHAT: feasible iff min_price <= price <= max_price and price >= tolerance * expected_price
    WHY: Buyer budget is a hard bound; the seller concedes at most (1 - tolerance) of
         the expected price. base_price is informational and not part of the rule.
    HOW: Two plain comparisons, no epsilon

    Args:
        price: Proposed price
        min_price: Buyer budget lower bound
        max_price: Buyer budget upper bound
        base_price: Seller listing base price
        expected_price: Seller expected price
        tolerance: Seller floor as a fraction of expected (defaults to settings)

    Returns:
        FeasibilityResult (truthy when feasible) with a short reason
    """
    tolerance = settings.SELLER_PRICE_TOLERANCE if tolerance is None else tolerance
    seller_floor = tolerance * expected_price

    if not (min_price <= price <= max_price):
        return FeasibilityResult(False, f"{price} outside buyer budget [{min_price}, {max_price}]")

    if price < seller_floor:
        return FeasibilityResult(
            False,
            f"{price} below seller floor {seller_floor:g} ({tolerance:.0%} of expected {expected_price})"
        )

    return FeasibilityResult(True, f"{price} within budget and seller tolerance (base {base_price})")
