"""
Counterparty matching data structures.

WHAT: Scored candidates returned by the listing scorer and the selected match
WHY: Typed boundary between the LLM scoring call and the orchestrator
HOW: Dataclasses
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class MatchScore:
    """Scorer's verdict for one listing."""
    listing_id: int
    score: float  # 0-100
    reason: str = ""


@dataclass
class MatchCandidate:
    """Listing selected by the matcher."""
    listing: Dict[str, Any]
    score: float
    reason: str
    matches_found: int

    @property
    def listing_id(self) -> int:
        return self.listing["id"]

    @property
    def seller_agent_id(self) -> int:
        return self.listing["sellerAgentId"]
