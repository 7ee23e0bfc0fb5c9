"""Pydantic model for byte-bounded document chunks."""

from pydantic import BaseModel, ConfigDict, Field


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = Field(description="Chunk text as it will be embedded and stored")
    byte_length: int = Field(ge=0, description="UTF-8 encoded length of text")
    index: int = Field(ge=0, description="Position of the chunk within its document")

    @classmethod
    def from_text(cls, text: str, index: int) -> "Chunk":
        return cls(text=text, byte_length=len(text.encode("utf-8")), index=index)
