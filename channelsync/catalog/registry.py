"""Attribute definition registry.

Read-side access to the attribute definitions the inheritance engine and
the validator work from.
"""

from collections.abc import Iterable

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.catalog.models import AttributeDefinition
from channelsync.domain import InheritanceStrategy


class AttributeDefinitionRegistry:
    """Lookup of attribute definitions by key or ID."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, definition_id: str) -> AttributeDefinition | None:
        return await self.session.get(AttributeDefinition, definition_id)

    async def get_by_key(self, key: str) -> AttributeDefinition | None:
        result = await self.session.execute(
            select(AttributeDefinition).where(AttributeDefinition.key == key)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, definition_ids: Iterable[str]) -> dict[str, AttributeDefinition]:
        """Map definition IDs to definitions; unknown IDs are absent."""
        ids = list(definition_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(AttributeDefinition).where(AttributeDefinition.id.in_(ids))
        )
        return {d.id: d for d in result.scalars().all()}

    async def get_inheritable(self, keys: list[str] | None = None) -> list[AttributeDefinition]:
        """Get usable definitions that support inheritance.

        Args:
            keys: Restrict to these attribute keys.

        Returns:
            Definitions in display order.
        """
        query = select(AttributeDefinition).where(
            and_(
                AttributeDefinition.is_active.is_(True),
                AttributeDefinition.deprecated_at.is_(None),
                AttributeDefinition.is_inheritable.is_(True),
                AttributeDefinition.inheritance_strategy != InheritanceStrategy.NEVER.value,
            )
        )
        if keys:
            query = query.where(AttributeDefinition.key.in_(keys))

        result = await self.session.execute(
            query.order_by(AttributeDefinition.sort_order, AttributeDefinition.key)
        )
        return list(result.scalars().all())

    async def unknown_keys(self, keys: Iterable[str]) -> list[str]:
        """Return the keys that have no definition, in input order."""
        keys = list(keys)
        if not keys:
            return []
        result = await self.session.execute(
            select(AttributeDefinition.key).where(AttributeDefinition.key.in_(keys))
        )
        known = set(result.scalars().all())
        return [k for k in keys if k not in known]
