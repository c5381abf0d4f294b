"""
A2A message envelope and protocol errors.

WHAT: Pydantic models for the JSON-RPC "message/send" request and its reply
WHY: Validate counterparty replies at the boundary instead of indexing raw dicts
HOW: pydantic v2 models; unknown reply fields are tolerated
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TextPart(BaseModel):
    """Single text part of an A2A message."""
    model_config = ConfigDict(extra="allow")

    kind: str = "text"
    text: Optional[str] = None


class A2AMessage(BaseModel):
    """Message body carried in params.message."""
    messageId: str
    role: Literal["user", "agent"] = "user"
    parts: list[TextPart]


class SendMessageParams(BaseModel):
    message: A2AMessage


class SendMessageRequest(BaseModel):
    """
    Outbound envelope.

    Serialized with both "jsonrpc" and "protocolVersion" set to the protocol version;
    agent runtimes validate the former, observers read the latter.
    """
    jsonrpc: str = "2.0"
    protocolVersion: str = "2.0"
    method: Literal["message/send"] = "message/send"
    params: SendMessageParams
    id: int


class ReplyResult(BaseModel):
    """Counterparty reply payload (result)."""
    model_config = ConfigDict(extra="allow")

    kind: Optional[str] = None
    messageId: str
    role: Optional[str] = None
    parts: list[TextPart] = Field(default_factory=list)

    def first_text(self) -> Optional[str]:
        """Text of the first text part, or None."""
        for part in self.parts:
            if part.kind == "text" and part.text:
                return part.text
        return None


class SendMessageResponse(BaseModel):
    """Inbound envelope; exactly one of result/error is expected."""
    model_config = ConfigDict(extra="allow")

    jsonrpc: Optional[str] = None
    id: Optional[Any] = None
    result: Optional[ReplyResult] = None
    error: Optional[dict] = None


class A2AReply(BaseModel):
    """What callers get back from a successful exchange."""
    text: str
    message_id: str
    request_message_id: str
    endpoint: str


class A2AError(Exception):
    """Base class for message protocol failures."""

    def __init__(self, message: str, endpoint: str):
        super().__init__(message)
        self.endpoint = endpoint


class CounterpartyUnreachableError(A2AError):
    """Counterparty timed out or the transport failed."""

    def __init__(self, message: str, endpoint: str, timeout: float | None = None):
        super().__init__(message, endpoint)
        self.timeout = timeout


class A2AResponseError(A2AError):
    """Counterparty answered with a non-2xx status, a JSON-RPC error or a malformed envelope."""

    def __init__(self, message: str, endpoint: str, status_code: int | None = None):
        super().__init__(message, endpoint)
        self.status_code = status_code
