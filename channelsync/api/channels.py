"""Channel account API endpoints.

Read-only views of an account's taxonomy cache and marketplace links.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.api.schemas import (
    ErrorResponse,
    LinkResponse,
    LinkSchema,
    TaxonomyHealthResponse,
    TaxonomyStatusResponse,
    TaxonomyTypeStatus,
)
from channelsync.domain import ChannelAccountNotFoundError, LinkLevel
from channelsync.infrastructure.database import get_session
from channelsync.infrastructure.models import MarketplaceLink
from channelsync.links import LinkRegistry
from channelsync.taxonomy import TaxonomyStore

router = APIRouter(prefix="/channel-accounts", tags=["Channel Accounts"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]


# ============================================================================
# Converters
# ============================================================================


def link_to_schema(link: MarketplaceLink) -> LinkSchema:
    """Convert a MarketplaceLink model to its response schema."""
    return LinkSchema(
        id=link.id,
        channel_account_id=link.channel_account_id,
        level=link.level,
        internal_id=link.internal_id,
        external_product_id=link.external_product_id,
        external_variant_id=link.external_variant_id,
        internal_sku=link.internal_sku,
        external_sku=link.external_sku,
        status=link.status,
        parent_link_id=link.parent_link_id,
        external_metadata=link.external_metadata or {},
        linked_at=link.linked_at,
        linked_by=link.linked_by,
    )


def _account_not_found(e: ChannelAccountNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error_code": "ACCOUNT_NOT_FOUND", "message": e.message},
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/{account_id}/taxonomy/health",
    response_model=TaxonomyHealthResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Taxonomy health",
)
async def get_taxonomy_health(account_id: str, session: SessionDep) -> TaxonomyHealthResponse:
    """Score the completeness and freshness of an account's taxonomy.

    Raises:
        HTTPException: If the account does not exist.
    """
    try:
        report = await TaxonomyStore(session).health_report(account_id)
    except ChannelAccountNotFoundError as e:
        raise _account_not_found(e) from e

    return TaxonomyHealthResponse(
        account_id=report.account_id,
        score=report.score,
        status=report.status,
        issues=report.issues,
        stats=report.stats,
    )


@router.get(
    "/{account_id}/taxonomy/status",
    response_model=TaxonomyStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Taxonomy cache status",
)
async def get_taxonomy_status(account_id: str, session: SessionDep) -> TaxonomyStatusResponse:
    store = TaxonomyStore(session)
    try:
        account = await store.get_account(account_id)
        cache = await store.cache_status(account_id)
    except ChannelAccountNotFoundError as e:
        raise _account_not_found(e) from e

    return TaxonomyStatusResponse(
        account_id=account.id,
        channel_type=account.channel_type,
        account_name=account.account_name,
        types={name: TaxonomyTypeStatus(**values) for name, values in cache.items()},
    )


@router.get(
    "/{account_id}/links/{level}/{external_id}",
    response_model=LinkResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Look up a link by external ID",
)
async def get_link(
    account_id: str,
    level: LinkLevel,
    external_id: str,
    session: SessionDep,
) -> LinkResponse:
    """Find the link bound to an external product or variant.

    Product links are returned with their variant links, variant links
    with their parent.

    Raises:
        HTTPException: If the account or the link does not exist.
    """
    try:
        await TaxonomyStore(session).get_account(account_id)
    except ChannelAccountNotFoundError as e:
        raise _account_not_found(e) from e

    registry = LinkRegistry(session)
    link = await registry.find_by_external(account_id, level, external_id)
    if link is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "LINK_NOT_FOUND",
                "message": f"No {level.value} link for external ID {external_id}",
            },
        )

    if link.link_level == LinkLevel.PRODUCT:
        children = await registry.children(link)
        return LinkResponse(
            link=link_to_schema(link),
            variant_links=[link_to_schema(c) for c in children],
        )

    parent = await registry.get_by_id(link.parent_link_id) if link.parent_link_id else None
    return LinkResponse(
        link=link_to_schema(link),
        parent_link=link_to_schema(parent) if parent is not None else None,
    )
