"""
Schema subset for OpenAI-style streaming chunks.
Only the fields needed to locate a delta's text are declared; everything
else the service sends is kept as extra data.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["function", "assistant", "system", "user", "tool"]


class Delta(BaseModel):
    model_config = ConfigDict(extra="allow")
    role: Optional[MessageRole] = None
    content: Optional[Union[str, list[dict[str, Any]]]] = None
    tool_calls: Optional[list[dict[str, Any]]] = None


class ChoiceStream(BaseModel):
    model_config = ConfigDict(extra="allow")
    index: int = 0
    delta: Delta = Field(default_factory=Delta)
    logprobs: Optional[Any] = None
    finish_reason: Optional[str] = None


class ChunkStream(BaseModel):
    """One `chat.completion.chunk` payload as produced by the SSE stream."""

    model_config = ConfigDict(extra="allow")
    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: list[ChoiceStream] = Field(default_factory=list)
