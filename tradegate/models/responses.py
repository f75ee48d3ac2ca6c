"""Response envelope for the query service.

Every endpoint answers with { success, data, error, meta }; errors are built
by the handlers in ``tradegate.middleware.error_handler`` with the same shape.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """JSON envelope for query responses."""

    success: bool
    data: T | None = None
    error: str | None = None
    meta: dict | None = None

    @classmethod
    def ok(cls, data: Any, **meta: Any) -> dict:
        """Successful envelope, already dumped to JSON-compatible primitives."""
        return cls(success=True, data=data, meta=meta or None).model_dump(mode="json")
