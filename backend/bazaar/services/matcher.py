"""
Counterparty matcher.

WHAT: Pick the single best listing for a buy request
WHY: The orchestrator needs one candidate, or a clean "no match", never an exception
HOW: Delegate 0-100 scoring to a ListingScorer, drop scores under the floor and
     unknown ids, take the highest score (affordable first, then lower expected price)
"""

from typing import Any, Dict, List, Optional, Protocol

from ..agents.prompts import parse_match_payload, render_match_prompt
from ..core.config import settings
from ..llm.provider import LLMProvider
from ..llm.provider_factory import get_provider
from ..models.matching import MatchCandidate, MatchScore
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ListingScorer(Protocol):
    """Scoring collaborator: (intent, candidates) -> scores."""

    async def score(
        self,
        buy_request: Dict[str, Any],
        listings: List[Dict[str, Any]],
    ) -> List[MatchScore]:
        ...


class LLMListingScorer:
    """ListingScorer backed by the chat completions provider (the shared one if none is given)."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        *,
        score_floor: int | None = None,
        temperature: float | None = None,
        max_tokens: int = 500,
    ):
        self.provider = provider
        self.score_floor = settings.MATCH_SCORE_FLOOR if score_floor is None else score_floor
        self.temperature = settings.LLM_SCORING_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens

    async def score(
        self,
        buy_request: Dict[str, Any],
        listings: List[Dict[str, Any]],
    ) -> List[MatchScore]:
        """
        Score listings with one LLM call.

        Entries with a missing id or a non-numeric score are skipped; scores are clamped
        to 0-100.

        Raises:
            Provider errors and ValueError on undecodable output (the matcher handles both)
        """
        if not listings:
            return []

        messages = render_match_prompt(buy_request, listings, self.score_floor)
        provider = self.provider or get_provider()
        result = await provider.generate(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        scores = []
        for entry in parse_match_payload(result.text):
            if not isinstance(entry, dict):
                continue
            try:
                listing_id = int(str(entry.get("listingId", entry.get("id"))).lstrip("#"))
                score = max(0.0, min(100.0, float(entry.get("score"))))
            except (TypeError, ValueError):
                logger.debug(f"Skipping unparseable match entry: {entry}")
                continue
            scores.append(MatchScore(listing_id=listing_id, score=score, reason=str(entry.get("reason", ""))))

        return scores


class CounterpartyMatcher:
    """
    Select the best counterparty listing for a buy request.

    WHAT: Ranking over scorer output with a fixed floor
    WHY: Scoring failures must read as "no match" to the orchestrator
    HOW: Filter, then sort by (score desc, affordable first, expected price asc)
    """

    def __init__(self, scorer: ListingScorer, *, score_floor: int | None = None):
        self.scorer = scorer
        self.score_floor = settings.MATCH_SCORE_FLOOR if score_floor is None else score_floor

    async def find_best_match(
        self,
        buy_request: Dict[str, Any],
        listings: List[Dict[str, Any]],
    ) -> Optional[MatchCandidate]:
        """
        Return the highest-scoring listing at or above the floor.

        Args:
            buy_request: Buy request projection (title, description, minPrice, maxPrice)
            listings: Candidate listing projections

        Returns:
            MatchCandidate, or None if nothing qualifies or scoring failed
        """
        if not listings:
            return None

        try:
            scores = await self.scorer.score(buy_request, listings)
        except Exception as e:
            logger.error(f"Listing scoring failed for buy request {buy_request.get('id')}: {e}")
            return None

        by_id = {listing["id"]: listing for listing in listings}
        qualified = []
        for match in scores:
            listing = by_id.get(match.listing_id)
            if listing is None:
                logger.debug(f"Scorer returned unknown listing {match.listing_id}")
                continue
            if match.score < self.score_floor:
                continue
            qualified.append((match, listing))

        if not qualified:
            logger.info(f"No listing scored >= {self.score_floor} for buy request {buy_request.get('id')}")
            return None

        max_price = buy_request["maxPrice"]
        qualified.sort(key=lambda pair: (
            -pair[0].score,
            pair[1]["basePrice"] > max_price,
            pair[1]["expectedPrice"],
        ))
        best, listing = qualified[0]

        logger.info(
            f"Matched listing #{listing['id']} ({best.score:g}%) for buy request "
            f"{buy_request.get('id')} out of {len(qualified)} qualified: {best.reason}"
        )
        return MatchCandidate(listing=listing, score=best.score, reason=best.reason, matches_found=len(qualified))
