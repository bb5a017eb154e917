"""Common Pydantic schemas for the RadLIMS REST API.

Provides reusable schemas for pagination and error handling.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response wrapper.

    Attributes:
        items: List of items for the current page
        total: Total number of items across all pages
        offset: Current offset used
        limit: Current limit used
    """

    items: list[T]
    total: int
    offset: int
    limit: int


class ErrorResponse(BaseModel):
    """Standard error response format.

    Attributes:
        detail: Human-readable error message
        code: Machine-readable error code (e.g. "stale_state")
        retryable: Whether the same request may succeed when repeated
    """

    detail: str
    code: str | None = None
    retryable: bool = False
