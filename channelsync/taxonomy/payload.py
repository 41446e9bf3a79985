"""Discovery payload schemas and normalisation.

A channel adapter returns categories, attributes and value lists in a
loose shape. ``PayloadNormalizer`` flattens them into taxonomy entry
dicts that ``TaxonomyEntryPayload`` validates one by one.

Category paths use the ``>`` separator:
    Clothing
    Clothing > Tops
    Clothing > Tops > Shirts
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator

from channelsync.domain import TaxonomyType

PATH_SEPARATOR = ">"
LIST_DATA_TYPE = "list"


class TaxonomyEntryPayload(BaseModel):
    """One taxonomy entry as accepted by the store."""

    type: TaxonomyType
    external_id: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=500)
    key: str | None = Field(default=None, max_length=255)
    data_type: str | None = Field(default=None, max_length=50)
    is_required: bool = False
    validation_rules: dict[str, Any] = Field(default_factory=dict)
    level: int = Field(default=1, ge=1)
    parent_external_id: str | None = Field(default=None, max_length=255)
    category_external_id: str | None = Field(default=None, max_length=255)

    @field_validator("external_id", "name")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @property
    def identity(self) -> tuple[str, str]:
        return (self.type.value, self.external_id)


class DiscoveryPayload(BaseModel):
    """Raw schema returned by a discovery adapter."""

    categories: list[dict[str, Any]] = Field(default_factory=list)
    attributes: list[dict[str, Any]] = Field(default_factory=list)
    value_lists: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.categories or self.attributes or self.value_lists)


@dataclass
class CategoryNode:
    """A category reconstructed from a path.

    Attributes:
        external_id: Channel category ID (the path itself when the channel gave none).
        name: Leaf name.
        full_path: Full category path (e.g., "Clothing > Tops > Shirts").
        parent_external_id: External ID of the parent category (None for root).
        level: Depth in the tree (1 = root).
    """

    external_id: str
    name: str
    full_path: str
    parent_external_id: str | None = None
    level: int = 1
    children: list["CategoryNode"] = field(default_factory=list, repr=False)

    @property
    def path_parts(self) -> list[str]:
        """Get list of path components.

        Returns:
            List of category names from root to this category.
        """
        return split_path(self.full_path)


def split_path(path: str) -> list[str]:
    return [part.strip() for part in path.split(PATH_SEPARATOR) if part.strip()]


class PayloadNormalizer:
    """Flatten a discovery payload into taxonomy entry dicts.

    Example usage:
        normalizer = PayloadNormalizer()
        entries = normalizer.normalize(payload)
        result = await store.upsert_entries(account.id, entries)
    """

    def __init__(self) -> None:
        """Initialize normalizer with empty category storage."""
        self._by_path: dict[str, CategoryNode] = {}

    def normalize(self, payload: DiscoveryPayload) -> list[dict[str, Any]]:
        """Convert a payload into entry dicts.

        Malformed items are passed through as-is so the store can report
        them as skipped.

        Args:
            payload: Raw adapter payload.

        Returns:
            Entry dicts for ``TaxonomyStore.upsert_entries``.
        """
        entries: list[dict[str, Any]] = []
        entries.extend(self.normalize_categories(payload.categories))

        inline_lists: list[dict[str, Any]] = []
        for raw in payload.attributes:
            entry, inline = self._normalize_attribute(raw)
            entries.append(entry)
            if inline is not None:
                inline_lists.append(inline)

        for value_list in [*payload.value_lists, *inline_lists]:
            entries.extend(self._normalize_value_list(value_list))

        return entries

    def normalize_categories(self, categories: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Expand category records, creating missing ancestors from paths.

        Args:
            categories: Records with ``external_id`` and ``name`` and/or ``path``.

        Returns:
            Category entry dicts, parents before children.
        """
        self._by_path.clear()
        passthrough: list[dict[str, Any]] = []

        # First pass: index categories that carry a path
        for raw in categories:
            path = raw.get("path") or raw.get("full_path")
            if not path or not split_path(str(path)):
                passthrough.append(self._category_without_path(raw))
                continue

            parts = split_path(str(path))
            full_path = f" {PATH_SEPARATOR} ".join(parts)
            node = CategoryNode(
                external_id=str(raw.get("external_id") or raw.get("id") or full_path),
                name=str(raw.get("name") or parts[-1]),
                full_path=full_path,
                level=len(parts),
            )
            self._by_path[full_path] = node

        # Second pass: create missing ancestors
        for node in list(self._by_path.values()):
            parts = node.path_parts
            for depth in range(1, len(parts)):
                ancestor_path = f" {PATH_SEPARATOR} ".join(parts[:depth])
                if ancestor_path not in self._by_path:
                    self._by_path[ancestor_path] = CategoryNode(
                        external_id=ancestor_path,
                        name=parts[depth - 1],
                        full_path=ancestor_path,
                        level=depth,
                    )

        # Third pass: establish parent-child relationships
        for node in self._by_path.values():
            if node.level == 1:
                continue
            parent_path = f" {PATH_SEPARATOR} ".join(node.path_parts[:-1])
            parent = self._by_path[parent_path]
            node.parent_external_id = parent.external_id
            parent.children.append(node)

        nodes = sorted(self._by_path.values(), key=lambda n: (n.level, n.full_path))
        return [
            {
                "type": TaxonomyType.CATEGORY.value,
                "external_id": n.external_id,
                "name": n.name,
                "key": n.full_path,
                "level": n.level,
                "parent_external_id": n.parent_external_id,
            }
            for n in nodes
        ] + passthrough

    def get_by_path(self, path: str) -> CategoryNode | None:
        """Look up a category from the last ``normalize_categories`` call."""
        return self._by_path.get(f" {PATH_SEPARATOR} ".join(split_path(path)))

    def _category_without_path(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {
            "type": TaxonomyType.CATEGORY.value,
            "external_id": _text(raw.get("external_id") or raw.get("id")),
            "name": _text(raw.get("name")),
            "key": _text(raw.get("key")),
            "level": raw.get("level", 1),
            "parent_external_id": _text(raw.get("parent_external_id") or raw.get("parent_id")),
        }

    def _normalize_attribute(
        self, raw: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any] | None]:
        external_id = raw.get("external_id") or raw.get("code") or raw.get("key")
        rules = dict(raw.get("validation_rules") or {})
        data_type = raw.get("data_type") or raw.get("type") or "string"
        inline = None

        value_list_code = raw.get("value_list") or raw.get("values_list")
        values = raw.get("values")
        if values and external_id:
            value_list_code = value_list_code or str(external_id)
            inline = {"code": value_list_code, "values": values}
        if value_list_code:
            rules["value_list"] = str(value_list_code)
            data_type = LIST_DATA_TYPE

        entry = {
            "type": TaxonomyType.ATTRIBUTE.value,
            "external_id": _text(external_id),
            "name": _text(raw.get("name") or raw.get("label") or external_id),
            "key": _text(raw.get("key") or external_id),
            "data_type": data_type,
            "is_required": bool(raw.get("is_required", raw.get("required", False))),
            "validation_rules": rules,
            "category_external_id": _text(raw.get("category_external_id") or raw.get("category")),
        }
        return entry, inline

    def _normalize_value_list(self, raw: dict[str, Any]) -> list[dict[str, Any]]:
        code = raw.get("code")
        entries = []
        for value in raw.get("values") or []:
            if isinstance(value, dict):
                value_code = value.get("code") or value.get("value")
                label = value.get("label") or value_code
            else:
                value_code = label = value
            entries.append(
                {
                    "type": TaxonomyType.VALUE.value,
                    "external_id": f"{code}:{value_code}" if code and value_code is not None else None,
                    "name": _text(label),
                    "key": _text(value_code),
                    "parent_external_id": _text(code),
                }
            )
        return entries


def _text(value: Any) -> str | None:
    return None if value is None else str(value)
