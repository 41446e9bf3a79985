"""State machines and enumerations for the synchronization core.

The link lifecycle is a deterministic state machine. The remaining
enumerations describe levels, taxonomy entry types, validation states
and the severity/check vocabulary used by the validator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from channelsync.domain.exceptions import InvalidStateTransitionError

# Type variable for state machine states
S = TypeVar("S", bound=Enum)


# ============================================================================
# Link State Machine
# ============================================================================


class LinkStatus(str, Enum):
    """Link lifecycle states.

    State diagram:
        PENDING ──────────────► FAILED
          │    ◄── retry ────────┘
          │
          │ confirm (both sides known)
          ▼
        LINKED

    LINKED has no outgoing transitions through ``mark_status``. Returning
    a linked binding to PENDING is the explicit ``unlink`` operation.
    """

    PENDING = "pending"
    LINKED = "linked"
    FAILED = "failed"

    def can_transition_to(self, target: "LinkStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _LINK_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["LinkStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return sorted(_LINK_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_terminal(self) -> bool:
        """Check if no further ``mark_status`` transitions are possible."""
        return len(_LINK_TRANSITIONS.get(self, set())) == 0

    def is_retryable(self) -> bool:
        """Check if the link can be moved back to PENDING for another push."""
        return self == LinkStatus.FAILED


_LINK_TRANSITIONS: dict[LinkStatus, set[LinkStatus]] = {
    LinkStatus.PENDING: {LinkStatus.LINKED, LinkStatus.FAILED},
    LinkStatus.FAILED: {LinkStatus.PENDING},
    LinkStatus.LINKED: set(),
}


def validate_link_transition(
    link_id: str,
    current: LinkStatus,
    target: LinkStatus,
) -> None:
    """Validate a link state transition.

    Args:
        link_id: Link ID for error reporting.
        current: Current link state.
        target: Target link state.

    Raises:
        InvalidStateTransitionError: If transition is not allowed.
    """
    if not current.can_transition_to(target):
        raise InvalidStateTransitionError(
            entity_type="Link",
            entity_id=link_id,
            current_state=current.value,
            target_state=target.value,
            allowed_transitions=[s.value for s in current.allowed_transitions()],
        )


@dataclass(frozen=True)
class StateTransition(Generic[S]):
    """Record of a state transition.

    Used to track state changes for logging.
    """

    from_state: S
    to_state: S
    trigger: str

    def __str__(self) -> str:
        """Human-readable transition description."""
        return f"{self.from_state.value} --[{self.trigger}]--> {self.to_state.value}"


# ============================================================================
# Enumerations
# ============================================================================


class LinkLevel(str, Enum):
    """Granularity of a link."""

    PRODUCT = "product"
    VARIANT = "variant"


class EntityKind(str, Enum):
    """Kind of internal catalog entity an assignment or link belongs to."""

    PRODUCT = "product"
    VARIANT = "variant"


class TaxonomyType(str, Enum):
    """Kind of discovered schema element."""

    CATEGORY = "category"
    ATTRIBUTE = "attribute"
    VALUE = "value"


class ValidationStatus(str, Enum):
    """Validation outcome stored on an attribute assignment."""

    VALID = "valid"
    INVALID = "invalid"
    UNVALIDATED = "unvalidated"


class AssignmentSource(str, Enum):
    """How an attribute assignment got its value."""

    MANUAL = "manual"
    INHERITANCE = "inheritance"
    IMPORT = "import"


class InheritanceStrategy(str, Enum):
    """Inheritance strategy of an attribute definition."""

    ALWAYS = "always"
    FALLBACK = "fallback"
    NEVER = "never"


class AttributeDataType(str, Enum):
    """Data types supported by attribute definitions."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    JSON = "json"
    DATE = "date"
    URL = "url"


class Severity(str, Enum):
    """Severity of a validator issue, ordered from most to least severe."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Sort rank, lower is more severe."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.WARNING: 1,
    Severity.INFO: 2,
}


class CheckId(str, Enum):
    """Named consistency checks run by the validator."""

    ORPHANED_INHERITANCE = "orphaned_inheritance"
    INHERITANCE_DRIFT = "inheritance_drift"
    INVALID_INHERITANCE = "invalid_inheritance"
    ORPHANED_ATTRIBUTE = "orphaned_attribute"
    DUPLICATE_ASSIGNMENT = "duplicate_assignment"
    MISSING_INHERITANCE = "missing_inheritance"
    ORPHANED_VARIANT_LINK = "orphaned_variant_link"
    INVALID_PARENT_LINK = "invalid_parent_link"
    DUPLICATE_BINDING = "duplicate_binding"
    INVALID_VALUE = "invalid_value"
    NEVER_VALIDATED = "never_validated"


class FixAction(str, Enum):
    """Repair actions a validator issue can carry."""

    DELETE = "delete"
    REINHERIT = "reinherit"
    CLEAR_INHERITANCE = "clear_inheritance"
    MERGE = "merge"
    CREATE_INHERITANCE = "create_inheritance"
    ATTACH_TO_PARENT = "attach_to_parent"
    REATTACH_PARENT = "reattach_parent"
    REVALIDATE = "revalidate"
