"""Conversation history turns supplied by the caller."""

from typing import Literal

from pydantic import BaseModel


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str

    def to_message(self) -> dict:
        return {"role": self.role, "content": self.content}
