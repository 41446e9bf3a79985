"""Tests for discovery payload normalisation."""

import pytest
from pydantic import ValidationError

from channelsync.taxonomy import DiscoveryPayload, PayloadNormalizer, TaxonomyEntryPayload


class TestTaxonomyEntryPayload:
    """Tests for TaxonomyEntryPayload."""

    def test_text_is_stripped(self) -> None:
        """Whitespace around IDs and names is removed."""
        payload = TaxonomyEntryPayload(type="attribute", external_id=" color ", name=" Color ")
        assert payload.external_id == "color"
        assert payload.name == "Color"
        assert payload.identity == ("attribute", "color")

    def test_blank_name_rejected(self) -> None:
        """A blank name is not a valid entry."""
        with pytest.raises(ValidationError):
            TaxonomyEntryPayload(type="attribute", external_id="color", name="   ")

    def test_unknown_type_rejected(self) -> None:
        """Only category, attribute and value entries exist."""
        with pytest.raises(ValidationError):
            TaxonomyEntryPayload(type="brand", external_id="b", name="B")


class TestNormalizeCategories:
    """Tests for category path expansion."""

    @pytest.fixture
    def normalizer(self) -> PayloadNormalizer:
        return PayloadNormalizer()

    def test_missing_ancestors_are_created(self, normalizer: PayloadNormalizer) -> None:
        """A deep path yields its ancestors, parents first."""
        entries = normalizer.normalize_categories(
            [{"external_id": "C3", "path": "Clothing > Tops > Shirts"}]
        )

        assert [e["external_id"] for e in entries] == ["Clothing", "Clothing > Tops", "C3"]
        assert [e["level"] for e in entries] == [1, 2, 3]
        assert entries[0]["parent_external_id"] is None
        assert entries[1]["parent_external_id"] == "Clothing"
        assert entries[2]["parent_external_id"] == "Clothing > Tops"
        assert entries[2]["name"] == "Shirts"

    def test_explicit_ancestor_keeps_its_id(self, normalizer: PayloadNormalizer) -> None:
        """A parent present in the payload is used instead of a synthetic one."""
        entries = normalizer.normalize_categories(
            [
                {"external_id": "C1", "path": "Clothing"},
                {"external_id": "C2", "path": "Clothing>Tops"},
            ]
        )
        by_id = {e["external_id"]: e for e in entries}
        assert set(by_id) == {"C1", "C2"}
        assert by_id["C2"]["parent_external_id"] == "C1"
        assert normalizer.get_by_path("Clothing > Tops").external_id == "C2"

    def test_category_without_path_passes_through(self, normalizer: PayloadNormalizer) -> None:
        """Categories with explicit parents are kept as given."""
        entries = normalizer.normalize_categories(
            [{"id": 7, "name": "Shoes", "parent_id": 3, "level": 2}]
        )
        assert entries == [
            {
                "type": "category",
                "external_id": "7",
                "name": "Shoes",
                "key": None,
                "level": 2,
                "parent_external_id": "3",
            }
        ]


class TestNormalizeAttributes:
    """Tests for attribute and value list normalisation."""

    def test_inline_values_become_value_list(self) -> None:
        """Attribute values are split into value entries."""
        payload = DiscoveryPayload(
            attributes=[{"code": "color", "label": "Color", "type": "TEXT", "values": ["Red", "Blue"]}]
        )
        entries = PayloadNormalizer().normalize(payload)

        attribute = entries[0]
        assert attribute["type"] == "attribute"
        assert attribute["data_type"] == "list"
        assert attribute["validation_rules"] == {"value_list": "color"}

        values = entries[1:]
        assert [v["external_id"] for v in values] == ["color:Red", "color:Blue"]
        assert all(v["parent_external_id"] == "color" for v in values)

    def test_separate_value_lists(self) -> None:
        """Value lists carry code and label per value."""
        payload = DiscoveryPayload(
            attributes=[{"code": "size", "label": "Size", "values_list": "sizes", "required": True}],
            value_lists=[{"code": "sizes", "values": [{"code": "S", "label": "Small"}]}],
        )
        entries = PayloadNormalizer().normalize(payload)

        attribute, value = entries
        assert attribute["is_required"] is True
        assert attribute["validation_rules"] == {"value_list": "sizes"}
        assert value == {
            "type": "value",
            "external_id": "sizes:S",
            "name": "Small",
            "key": "S",
            "parent_external_id": "sizes",
        }

    def test_numeric_codes_are_text(self) -> None:
        """Numeric channel codes are stored as strings."""
        entries = PayloadNormalizer().normalize(
            DiscoveryPayload(attributes=[{"code": 42, "label": "Weight", "type": "DECIMAL"}])
        )
        assert entries[0]["external_id"] == "42"
        assert entries[0]["key"] == "42"
        assert entries[0]["data_type"] == "DECIMAL"

    def test_empty_payload(self) -> None:
        """A payload without any element is empty."""
        assert DiscoveryPayload(errors=["timeout"]).is_empty
        assert not DiscoveryPayload(attributes=[{"code": "a"}]).is_empty
