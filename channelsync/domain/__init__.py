"""Domain layer - state machines, value objects, validation rules and exceptions.

- **State Machines**: Link lifecycle (LinkStatus) and the enumerations used
  across the core (levels, taxonomy types, severities, checks)
- **Value Objects**: OwnerRef, the tagged reference to a product or variant
- **Validation**: Typed attribute value checks
- **Exceptions**: Domain-specific errors and invariant violations

Example usage:
    from channelsync.domain import LinkStatus, OwnerRef

    owner = OwnerRef.variant("7f0c...")
    LinkStatus.PENDING.can_transition_to(LinkStatus.LINKED)  # True
"""

from channelsync.domain.exceptions import (
    AdapterNotFoundError,
    ChannelAccountNotFoundError,
    ConfigurationError,
    DomainError,
    IntegrityError,
    InvalidStateTransitionError,
    LinkNotFoundError,
)
from channelsync.domain.state_machines import (
    AssignmentSource,
    AttributeDataType,
    CheckId,
    EntityKind,
    FixAction,
    InheritanceStrategy,
    LinkLevel,
    LinkStatus,
    Severity,
    StateTransition,
    TaxonomyType,
    ValidationStatus,
    validate_link_transition,
)
from channelsync.domain.validation import ValueCheck, validate_value
from channelsync.domain.value_objects import OwnerRef, generate_id

__all__ = [
    # Exceptions
    "AdapterNotFoundError",
    "ChannelAccountNotFoundError",
    "ConfigurationError",
    "DomainError",
    "IntegrityError",
    "InvalidStateTransitionError",
    "LinkNotFoundError",
    # State machines and enums
    "AssignmentSource",
    "AttributeDataType",
    "CheckId",
    "EntityKind",
    "FixAction",
    "InheritanceStrategy",
    "LinkLevel",
    "LinkStatus",
    "Severity",
    "StateTransition",
    "TaxonomyType",
    "ValidationStatus",
    "validate_link_transition",
    # Validation
    "ValueCheck",
    "validate_value",
    # Value objects
    "OwnerRef",
    "generate_id",
]
