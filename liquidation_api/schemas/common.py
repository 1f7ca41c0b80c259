from typing import Any, Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field

T = TypeVar("T")


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)  # type: ignore[assignment]
    pagination: PageMeta


def build_pagination(page: int, limit: int, total: int) -> PageMeta:
    # An empty listing still reports one (empty) page
    pages = -(-total // limit) if total else 1
    return PageMeta(
        page=page,
        limit=limit,
        total=total,
        total_pages=pages,
        has_next=page < pages,
        has_prev=page > 1,
    )


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorEnvelope(BaseModel):
    """Shape of every non-2xx body the API returns."""

    error: ErrorBody


# OpenAPI documentation for the errors a workflow endpoint can answer with
WORKFLOW_ERROR_RESPONSES = {
    403: {"model": ErrorEnvelope, "description": "UNAUTHORIZED_ACTION"},
    404: {"model": ErrorEnvelope, "description": "NOT_FOUND"},
    409: {"model": ErrorEnvelope, "description": "INVALID_STATE or CONFLICT"},
    422: {"model": ErrorEnvelope, "description": "VALIDATION_ERROR"},
}
