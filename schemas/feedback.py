"""Pydantic model for user feedback on an assistant message."""

from datetime import datetime, timezone
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas.retrieval import Source


class FeedbackRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId")
    rating: Literal["positive", "negative"]
    comment: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message_content: Optional[str] = Field(default=None, alias="messageContent")
    sources: list[Source] = Field(default_factory=list)

    @field_validator("sources", mode="before")
    @classmethod
    def _coerce_source_names(cls, value: Optional[list[Union[str, dict, Source]]]):
        # Chat clients send the cited file names as plain strings
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        return [{"file": item} if isinstance(item, str) else item for item in value]
