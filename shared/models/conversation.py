from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    """One message of a chat history. Owned by the caller, never persisted here."""

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict:
        """Return the turn as an OpenAI-format chat message."""
        return {"role": self.role.value, "content": self.content}
