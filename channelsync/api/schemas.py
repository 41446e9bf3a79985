"""API schemas for the channelsync status API.

Pydantic models for response validation and serialization.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = Field(default=None, description="Field that caused the error")
    message: str = Field(..., description="Error message")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: list[ErrorDetail] = Field(default_factory=list, description="Additional error details")


# ============================================================================
# Taxonomy Schemas
# ============================================================================


class TaxonomyHealthResponse(BaseModel):
    """Health score of an account's taxonomy."""

    account_id: str
    score: int = Field(..., ge=0, le=100, description="0-100 completeness and freshness score")
    status: str = Field(..., description="excellent, good, fair or poor")
    issues: list[str] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)


class TaxonomyTypeStatus(BaseModel):
    """Cache totals for one taxonomy type."""

    total: int
    active: int
    last_synced_at: datetime | None = None


class TaxonomyStatusResponse(BaseModel):
    """Cache status of an account's taxonomy."""

    account_id: str
    channel_type: str
    account_name: str
    types: dict[str, TaxonomyTypeStatus]


# ============================================================================
# Link Schemas
# ============================================================================


class LinkSchema(BaseModel):
    """A marketplace link."""

    id: str
    channel_account_id: str
    level: str
    internal_id: str
    external_product_id: str | None = None
    external_variant_id: str | None = None
    internal_sku: str | None = None
    external_sku: str | None = None
    status: str
    parent_link_id: str | None = None
    external_metadata: dict[str, Any] = Field(default_factory=dict)
    linked_at: datetime | None = None
    linked_by: str | None = None


class LinkResponse(BaseModel):
    """A link with its children (product links) or parent (variant links)."""

    link: LinkSchema
    variant_links: list[LinkSchema] = Field(default_factory=list)
    parent_link: LinkSchema | None = None
