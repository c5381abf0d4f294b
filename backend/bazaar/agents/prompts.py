"""
Prompt templates for matching and negotiation.

WHAT: Greeting text, listing-scoring prompt and negotiator persona prompt
WHY: Consistent wording and constraints across every buy request
HOW: Template strings with context injection, returning text or ChatMessage lists
"""

import json
from typing import Any, Dict, List

from ..core.config import settings
from ..llm.types import ChatMessage
from ..models.negotiation import NegotiationContext, Turn
from ..utils.history_truncation import truncate_turns


def _fmt(amount: float) -> str:
    """14.0 -> '14', 14.5 -> '14.5'."""
    return f"{amount:g}"


def render_greeting(context: NegotiationContext) -> str:
    """
    Opening message sent to the seller once a listing is matched.

    Carries the listing reference, the buyer's intent and budget, and the room id.
    """
    currency = context.currency
    return f"""Hello! I'm interested in your listing #{context.listing_id}.

**What I'm looking for:**
{context.request_title}

**Details:**
{context.request_description}

**Budget:**
{_fmt(context.min_price)}-{_fmt(context.max_price)} {currency}

I found your listing through semantic search and would like to discuss the details. Are you available to negotiate?

Negotiation Room: {context.room_id}"""


def render_match_prompt(
    buy_request: Dict[str, Any],
    listings: List[Dict[str, Any]],
    score_floor: int,
) -> List[ChatMessage]:
    """
    Render the listing-scoring prompt.

    WHAT: Ask the model for a 0-100 semantic-fit score per listing
    WHY: Keyword overlap misses "laptop" vs "MacBook" style matches
    HOW: System rules + user message listing every candidate with its price band
    """
    currency = settings.CURRENCY_UNIT
    listing_lines = "\n".join(
        f'[{i + 1}] ID: {l["id"]}, Title: "{l["title"]}", Description: "{l.get("description") or ""}", '
        f'Price: {_fmt(l["basePrice"])}-{_fmt(l["expectedPrice"])} {currency}'
        for i, l in enumerate(listings)
    )

    system_prompt = f"""You are a marketplace matching assistant. Find listings that semantically match a buyer's request.

Match on MEANING, not exact words:
- "black and white table" matches "White and Black Desk and Chair Set"
- "laptop" matches "MacBook"
- "desk chair" matches "office chair"

Return ONLY a JSON object of this form:
{{"matches": [{{"listingId": <listing ID>, "score": <0-100>, "reason": "<brief explanation>"}}]}}

Rules:
- Score 80+ for strong semantic matches
- Score {score_floor}-79 for partial matches (similar category/type)
- Do not include listings scoring below {score_floor}
- Consider price compatibility with the buyer's budget
- Return {{"matches": []}} if nothing matches"""

    user_prompt = f"""Buyer Request:
Title: "{buy_request["title"]}"
Description: "{buy_request["description"]}"
Budget: {_fmt(buy_request["minPrice"])}-{_fmt(buy_request["maxPrice"])} {currency}

Available Listings:
{listing_lines}

Find all matching listings."""

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def render_negotiator_prompt(context: NegotiationContext, history: List[Turn]) -> List[ChatMessage]:
    """
    Render the buyer-side negotiator prompt.

    WHAT: Persona with budget, the seller's public price band and turn rules
    WHY: Each turn must carry exactly one concrete proposal or decision with a price,
         so the decision detector can read it
    HOW: System message carrying the turn instruction, then the recent turns as
         alternating user (seller) and assistant (us) messages; the seller's turn is last
    """
    currency = context.currency
    system_prompt = f"""You are a buyer's negotiation agent talking to a seller's agent about listing #{context.listing_id}: "{context.listing_title}".

What the buyer wants: {context.request_title}
{context.request_description}

Your budget: {_fmt(context.min_price)}-{_fmt(context.max_price)} {currency}. NEVER agree to or offer more than {_fmt(context.max_price)} {currency}.
The seller's listed price range: {_fmt(context.base_price)}-{_fmt(context.expected_price)} {currency}.

Rules:
1. Each message contains exactly ONE concrete proposal or ONE decision.
2. Always write prices as a number followed by {currency} (e.g. "12 {currency}").
3. To accept the seller's price, say exactly: "I accept X {currency}. Deal!"
4. If agreement inside your budget is impossible, say "No deal" and explain briefly.
5. Start low and concede in small steps; never reveal your maximum.
6. Be polite and brief (under {settings.MAX_WORDS_PER_MESSAGE} words).

Each time the seller speaks, write your next message to the seller: one proposal or decision, with the price in {currency}.

Important Instructions:
- Do NOT reveal your chain-of-thought or internal reasoning
- NEVER output <think>...</think> tags
- Respond ONLY with your message to the seller"""

    messages: List[ChatMessage] = [{"role": "system", "content": system_prompt}]

    recent = truncate_turns(
        history,
        max_messages=settings.HISTORY_MAX_MESSAGES,
        max_chars=settings.HISTORY_MAX_CHARS,
    )
    for turn in recent:
        role = "assistant" if turn.speaker == "driver" else "user"
        messages.append({"role": role, "content": turn.content})

    return messages


def parse_match_payload(content: str) -> List[Dict[str, Any]]:
    """
    Pull the list of matches out of a scorer reply.

    Accepts a bare JSON array, an object with a "matches" key, and either wrapped in a
    ```json fence.

    Raises:
        ValueError: If no JSON can be decoded
    """
    text = (content or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()

    if not text.startswith(("[", "{")):
        starts = [i for i in (text.find("["), text.find("{")) if i >= 0]
        if not starts:
            raise ValueError("No JSON found in scorer reply")
        text = text[min(starts):]

    parsed, _ = json.JSONDecoder().raw_decode(text)
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        matches = parsed.get("matches", [])
        return matches if isinstance(matches, list) else []
    return []
