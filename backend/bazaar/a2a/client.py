"""
A2A message protocol client.

WHAT: One request/response "message/send" exchange with a counterparty endpoint
WHY: Negotiation rounds run over independently hosted agents
HOW: httpx AsyncClient POST bounded by a hard total timeout. No retries: a resent
     message could restate an offer the conversation has already moved past.
"""

import asyncio
import itertools
import time
from uuid import uuid4

import httpx
from pydantic import ValidationError

from .types import (
    A2AMessage,
    A2AReply,
    A2AResponseError,
    CounterpartyUnreachableError,
    SendMessageParams,
    SendMessageRequest,
    SendMessageResponse,
    TextPart,
)
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _preview(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class A2AClient:
    """
    Client for the A2A JSON-RPC message protocol.

    WHAT: send_message(endpoint, text) -> A2AReply
    WHY: Single place that knows the envelope and the timeout policy
    HOW: Build SendMessageRequest, POST, validate SendMessageResponse
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        protocol_version: str | None = None,
    ):
        """
        Args:
            timeout: Upper bound on one round trip in seconds (defaults to A2A_TIMEOUT_SECONDS)
            client: Shared httpx client (one is created if omitted)
            protocol_version: Envelope version string
        """
        self.timeout = timeout or settings.A2A_TIMEOUT_SECONDS
        self.protocol_version = protocol_version or settings.A2A_PROTOCOL_VERSION
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=50),
        )
        self._request_ids = itertools.count(int(time.time() * 1000))

    def build_request(self, text: str, message_id: str, request_id: int) -> SendMessageRequest:
        return SendMessageRequest(
            jsonrpc=self.protocol_version,
            protocolVersion=self.protocol_version,
            params=SendMessageParams(
                message=A2AMessage(messageId=message_id, role="user", parts=[TextPart(kind="text", text=text)])
            ),
            id=request_id,
        )

    async def send_message(
        self,
        endpoint: str,
        text: str,
        *,
        message_id: str | None = None,
    ) -> A2AReply:
        """
        Send one message and wait for the counterparty's reply.

        Args:
            endpoint: Counterparty A2A URL
            text: Message text
            message_id: Envelope message id (generated if omitted)

        Returns:
            A2AReply with the reply text and reply message id

        Raises:
            CounterpartyUnreachableError: Timeout or transport failure
            A2AResponseError: Non-2xx status, JSON-RPC error, or malformed/empty reply
        """
        message_id = message_id or f"msg-{uuid4().hex[:12]}"
        request = self.build_request(text, message_id, next(self._request_ids))

        logger.info(f"Sending A2A message {message_id} to {endpoint}: {_preview(text)}")

        try:
            response = await asyncio.wait_for(
                self.client.post(endpoint, json=request.model_dump(mode="json")),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"A2A message {message_id} timed out after {self.timeout}s to {endpoint}")
            raise CounterpartyUnreachableError(
                f"A2A request to {endpoint} timed out after {self.timeout:g} seconds",
                endpoint,
                timeout=self.timeout,
            ) from e
        except httpx.TransportError as e:
            logger.error(f"A2A transport failure to {endpoint}: {e}")
            raise CounterpartyUnreachableError(
                f"A2A endpoint {endpoint} unreachable: {e}", endpoint
            ) from e

        if response.is_error:
            raise A2AResponseError(
                f"A2A request failed: {response.status_code} {response.reason_phrase}",
                endpoint,
                status_code=response.status_code,
            )

        try:
            envelope = SendMessageResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise A2AResponseError(f"Malformed A2A reply from {endpoint}: {e}", endpoint) from e

        if envelope.error:
            raise A2AResponseError(
                f"A2A error from {endpoint}: {envelope.error.get('message', envelope.error)}",
                endpoint,
            )
        if envelope.result is None:
            raise A2AResponseError(f"A2A reply from {endpoint} has no result", endpoint)

        reply_text = envelope.result.first_text()
        if not reply_text:
            raise A2AResponseError(f"A2A reply from {endpoint} has no text part", endpoint)

        logger.info(f"Received A2A reply {envelope.result.messageId}: {_preview(reply_text)}")
        return A2AReply(
            text=reply_text,
            message_id=envelope.result.messageId,
            request_message_id=message_id,
            endpoint=endpoint,
        )

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()
