"""Domain exceptions.

All domain-level errors that represent business rule violations.
These exceptions are raised by the link registry, the taxonomy store
and the batch jobs when invariants are violated or a run is
misconfigured.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the CLI and API layers.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Link").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


# ============================================================================
# Link Errors
# ============================================================================


class IntegrityError(DomainError):
    """Raised when a link operation would break a binding invariant.

    Covers cross-account parents, parents that are not product-level,
    uniqueness collisions and linking without an external identifier.
    """

    pass


class LinkNotFoundError(DomainError):
    """Raised when a link cannot be found."""

    def __init__(self, link_id: str) -> None:
        super().__init__(f"Link {link_id} not found", details={"link_id": link_id})


# ============================================================================
# Channel Account Errors
# ============================================================================


class ChannelAccountNotFoundError(DomainError):
    """Raised when a channel account does not exist."""

    def __init__(self, account_id: str) -> None:
        """Initialize channel account not found error.

        Args:
            account_id: ID that could not be resolved.
        """
        super().__init__(
            f"Channel account {account_id} not found",
            details={"account_id": account_id},
        )


class AdapterNotFoundError(DomainError):
    """Raised when no discovery adapter is registered for a channel type."""

    def __init__(self, channel_type: str) -> None:
        super().__init__(
            f"No discovery adapter registered for channel type '{channel_type}'",
            details={"channel_type": channel_type},
        )


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(DomainError):
    """Raised before any work starts when a run is misconfigured.

    Examples are unknown product or variant IDs in a filter, unknown
    attribute keys, unknown check names or an invalid severity.
    """

    pass
