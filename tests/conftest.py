"""Shared fixtures: a SQLite database per test and catalog seeding helpers."""

from collections.abc import AsyncGenerator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from channelsync.catalog.models import AttributeAssignment, AttributeDefinition, Product, ProductVariant
from channelsync.domain import EntityKind, LinkLevel, LinkStatus, generate_id
from channelsync.infrastructure.database import Base, build_session_factory
from channelsync.infrastructure.logging import configure_logging
from channelsync.infrastructure.models import ChannelAccount, LegacySkuLink, MarketplaceLink


@pytest.fixture(scope="session", autouse=True)
def _logging() -> None:
    """Send structured logs to stderr so command output stays parseable."""
    configure_logging(level="WARNING", json_output=False)


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with working SAVEPOINTs."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'channelsync.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


class Seed:
    """Create catalog, account and link rows in a session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def account(
        self,
        channel_type: str = "shopify",
        name: str = "main",
        **kwargs: Any,
    ) -> ChannelAccount:
        account = ChannelAccount(
            id=kwargs.pop("id", generate_id()),
            channel_type=channel_type,
            account_name=name,
            settings=kwargs.pop("settings", {}),
            **kwargs,
        )
        self.session.add(account)
        await self.session.flush()
        return account

    async def product(
        self,
        sku: str = "TSHIRT",
        variant_skus: tuple[str, ...] = ("TSHIRT-S", "TSHIRT-M"),
    ) -> tuple[Product, list[ProductVariant]]:
        product = Product(id=generate_id(), sku=sku, name=f"Product {sku}")
        self.session.add(product)
        variants = [
            ProductVariant(id=generate_id(), product_id=product.id, sku=v, name=f"Variant {v}")
            for v in variant_skus
        ]
        self.session.add_all(variants)
        await self.session.flush()
        return product, variants

    async def definition(
        self,
        key: str = "material",
        data_type: str = "string",
        **kwargs: Any,
    ) -> AttributeDefinition:
        definition = AttributeDefinition(
            id=generate_id(),
            key=key,
            name=key.replace("_", " ").title(),
            data_type=data_type,
            validation_rules=kwargs.pop("validation_rules", {}),
            marketplace_mappings=kwargs.pop("marketplace_mappings", {}),
            **kwargs,
        )
        self.session.add(definition)
        await self.session.flush()
        return definition

    async def assign(
        self,
        owner: Product | ProductVariant,
        definition: AttributeDefinition | str,
        value: str | None,
        **kwargs: Any,
    ) -> AttributeAssignment:
        kind = EntityKind.PRODUCT if isinstance(owner, Product) else EntityKind.VARIANT
        definition_id = definition if isinstance(definition, str) else definition.id
        assignment = AttributeAssignment(
            id=generate_id(),
            owner_kind=kind.value,
            owner_id=owner.id,
            attribute_definition_id=definition_id,
            value=value,
            **kwargs,
        )
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def link(
        self,
        account: ChannelAccount,
        internal_id: str,
        level: LinkLevel = LinkLevel.PRODUCT,
        status: LinkStatus = LinkStatus.PENDING,
        **kwargs: Any,
    ) -> MarketplaceLink:
        link = MarketplaceLink(
            id=generate_id(),
            channel_account_id=account.id,
            level=level.value,
            internal_id=internal_id,
            status=status.value,
            external_metadata=kwargs.pop("external_metadata", {}),
            **kwargs,
        )
        self.session.add(link)
        await self.session.flush()
        return link

    async def legacy_link(
        self,
        account_id: str,
        product_id: str,
        external_product_id: str | None,
        link_status: str | None = "linked",
        created_at: datetime | None = None,
        **kwargs: Any,
    ) -> LegacySkuLink:
        legacy = LegacySkuLink(
            id=generate_id(),
            channel_account_id=account_id,
            product_id=product_id,
            external_product_id=external_product_id,
            link_status=link_status,
            **({"created_at": created_at} if created_at else {}),
            **kwargs,
        )
        self.session.add(legacy)
        await self.session.flush()
        return legacy


@pytest.fixture
def seed(session: AsyncSession) -> Seed:
    return Seed(session)
