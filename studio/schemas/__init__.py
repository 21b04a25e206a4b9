"""Pydantic request/response schemas."""

from studio.schemas.common import CamelModel, Envelope, PageQuery, PaginatedEnvelope, PaginationOut
from studio.schemas.health import HealthResponse

__all__ = [
    "CamelModel",
    "Envelope",
    "HealthResponse",
    "PageQuery",
    "PaginatedEnvelope",
    "PaginationOut",
]
