"""Chat message models for conversations routed to a backend."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from little_helper.models.command import CommandStatusResponse


class ChatRole(str, Enum):
    """Role of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """Single chat message."""

    model_config = ConfigDict(frozen=True)

    role: ChatRole = Field(..., description="Message role: system, user or assistant")
    content: str = Field(..., description="Message content")


class ChatRequest(BaseModel):
    """Request to continue a conversation."""

    conversation_id: str = Field(..., min_length=1, description="Conversation identifier")
    messages: list[ChatMessage] = Field(..., min_length=1, description="Message history")


class ChatResponse(BaseModel):
    """Assistant reply plus any commands it proposed."""

    conversation_id: str
    provider_id: str = Field(..., description="Backend that produced the reply")
    model_id: str = Field(..., description="Model that produced the reply")
    reply: str = Field(..., description="Assistant text with action tags removed")
    raw_reply: str = Field(..., description="Assistant text as returned by the backend")
    commands: list[CommandStatusResponse] = Field(
        default_factory=list, description="Commands run or awaiting the user"
    )
    pending_request_ids: list[str] = Field(
        default_factory=list, description="Commands waiting for confirmation or elevation"
    )
    iterations: int = Field(1, description="Backend calls made for this reply")
