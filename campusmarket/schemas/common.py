"""
Reusable schemas: the response envelope and pagination helpers.
"""
import math
from pydantic import BaseModel
from typing import Generic, TypeVar, List, Optional


T = TypeVar('T')


class Envelope(BaseModel, Generic[T]):
    """Standard single-payload response."""

    status: str = "success"
    message: Optional[str] = None
    data: Optional[T] = None

    model_config = {"from_attributes": True}


class PaginatedEnvelope(BaseModel, Generic[T]):
    """Standard paginated response."""

    status: str = "success"
    results: int
    total: int
    page: int
    pages: int
    data: List[T]

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    """Envelope carrying only a message."""

    status: str = "success"
    message: str


class BulkResult(BaseModel):
    """Outcome of a bulk offer operation."""

    processed: int
    requested: int


def paginate(items, total: int, page: int, limit: int) -> dict:
    """
    Build the paginated envelope payload.

    Args:
        items: Page of rows
        total: Total matching rows
        page: Current page (1-based)
        limit: Page size

    Returns:
        Dict with results, total, page, pages and data
    """
    return {
        "status": "success",
        "results": len(items),
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit) if limit else 0,
        "data": items,
    }


def envelope(data=None, message: Optional[str] = None) -> dict:
    """Build a success envelope."""
    return {"status": "success", "message": message, "data": data}


def reject_null(value, info):
    """
    Field validator body for optional-in-PATCH fields backed by NOT NULL
    columns: omitting them is fine, sending null is not.
    """
    if value is None:
        raise ValueError(f"{info.field_name} cannot be null")
    return value
