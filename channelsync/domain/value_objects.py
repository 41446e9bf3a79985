"""Value objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

from dataclasses import dataclass
from typing import Self
from uuid import uuid4

from channelsync.domain.state_machines import EntityKind


def generate_id() -> str:
    """Generate a new string identifier.

    Returns:
        Random UUID as string.
    """
    return str(uuid4())


@dataclass(frozen=True)
class OwnerRef:
    """Reference to the internal entity that owns an assignment or link.

    Persisted as the ``(owner_kind, owner_id)`` column pair.
    """

    kind: EntityKind
    id: str

    @classmethod
    def product(cls, product_id: str) -> Self:
        """Reference a product.

        Args:
            product_id: Internal product ID.

        Returns:
            OwnerRef of kind PRODUCT.
        """
        return cls(kind=EntityKind.PRODUCT, id=product_id)

    @classmethod
    def variant(cls, variant_id: str) -> Self:
        """Reference a variant.

        Args:
            variant_id: Internal variant ID.

        Returns:
            OwnerRef of kind VARIANT.
        """
        return cls(kind=EntityKind.VARIANT, id=variant_id)

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Parse the ``kind:id`` form produced by ``__str__``.

        Args:
            value: String like ``"variant:1234"``.

        Returns:
            OwnerRef instance.

        Raises:
            ValueError: If the string is not in ``kind:id`` form.
        """
        kind, sep, owner_id = value.partition(":")
        if not sep or not owner_id:
            raise ValueError(f"Invalid owner reference: {value!r}")
        return cls(kind=EntityKind(kind), id=owner_id)

    @property
    def is_variant(self) -> bool:
        return self.kind == EntityKind.VARIANT

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"
