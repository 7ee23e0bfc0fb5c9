"""Synthetic events injected by the stream relay.

All events use the same ``data: {json}`` framing as the upstream completion
stream, so a consumer reads ``choices[0].delta.content`` regardless of
whether a fragment came from the model or from the relay.
"""

import orjson
from pydantic import BaseModel, Field

from schemas.retrieval import Source

DONE_SENTINEL = "[DONE]"


def encode_data_line(payload: str) -> bytes:
    return f"data: {payload}\n\n".encode("utf-8")


class DeltaEvent(BaseModel):
    content: str
    synthetic: bool = True

    def encode(self) -> bytes:
        body = {"choices": [{"index": 0, "delta": {"content": self.content}}]}
        if self.synthetic:
            body["synthetic"] = True
        return encode_data_line(orjson.dumps(body).decode("utf-8"))


class MetaEvent(BaseModel):
    sources: list[Source] = Field(default_factory=list)
    indexed_urls: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "meta": {
                "sources": [s.model_dump(exclude_none=True) for s in self.sources],
                "indexedUrls": list(self.indexed_urls),
            }
        }

    def encode(self) -> bytes:
        return encode_data_line(orjson.dumps(self.to_dict()).decode("utf-8"))


class DoneEvent(BaseModel):
    def encode(self) -> bytes:
        return encode_data_line(DONE_SENTINEL)
