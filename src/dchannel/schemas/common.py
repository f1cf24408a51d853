"""Uniform response envelope for every JSON endpoint."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

CODE_SUCCESS = 1
CODE_FAILURE = 0


class Envelope(BaseModel):
    """Success/failure wrapper; ``type`` names the payload shape for clients."""

    code: int = Field(..., description="1 on success, 0 on failure.")
    data: Any = None
    type: str = Field("", description="Name of the payload type.")

    @classmethod
    def ok(cls, data: Any = None) -> Envelope:
        return cls(code=CODE_SUCCESS, data=data, type=_type_name(data))

    @classmethod
    def fail(cls, error: dict[str, Any]) -> Envelope:
        return cls(code=CODE_FAILURE, data=error, type="error")


def _type_name(data: Any) -> str:
    if isinstance(data, list):
        inner = _type_name(data[0]) if data else "any"
        return f"list[{inner}]"
    if isinstance(data, BaseModel):
        return type(data).__name__
    return type(data).__name__ if data is not None else "null"
