"""Internal product catalog: products, variants and typed attributes."""

from channelsync.catalog.models import (
    AttributeAssignment,
    AttributeDefinition,
    Product,
    ProductVariant,
)
from channelsync.catalog.registry import AttributeDefinitionRegistry
from channelsync.catalog.repository import CatalogRepository

__all__ = [
    "AttributeAssignment",
    "AttributeDefinition",
    "AttributeDefinitionRegistry",
    "CatalogRepository",
    "Product",
    "ProductVariant",
]
