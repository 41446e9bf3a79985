"""Tests for domain state machines."""

import pytest

from channelsync.domain import (
    InvalidStateTransitionError,
    LinkStatus,
    Severity,
    StateTransition,
    validate_link_transition,
)


class TestLinkStatus:
    """Tests for LinkStatus state machine."""

    def test_pending_can_transition_to_linked(self) -> None:
        """PENDING can transition to LINKED."""
        assert LinkStatus.PENDING.can_transition_to(LinkStatus.LINKED)

    def test_pending_can_transition_to_failed(self) -> None:
        """PENDING can transition to FAILED."""
        assert LinkStatus.PENDING.can_transition_to(LinkStatus.FAILED)

    def test_failed_can_retry(self) -> None:
        """FAILED can go back to PENDING for retry."""
        assert LinkStatus.FAILED.can_transition_to(LinkStatus.PENDING)
        assert LinkStatus.FAILED.is_retryable()

    def test_failed_cannot_jump_to_linked(self) -> None:
        """FAILED must pass through PENDING before LINKED."""
        assert not LinkStatus.FAILED.can_transition_to(LinkStatus.LINKED)

    def test_linked_is_terminal(self) -> None:
        """LINKED has no outgoing transitions."""
        assert LinkStatus.LINKED.is_terminal()
        assert LinkStatus.LINKED.allowed_transitions() == []

    def test_pending_is_not_retryable(self) -> None:
        """Only FAILED links are retryable."""
        assert not LinkStatus.PENDING.is_retryable()

    def test_allowed_transitions_from_pending(self) -> None:
        """PENDING has correct allowed transitions."""
        assert LinkStatus.PENDING.allowed_transitions() == [LinkStatus.FAILED, LinkStatus.LINKED]


class TestTransitionValidation:
    """Tests for transition validation."""

    def test_valid_transition_passes(self) -> None:
        """Valid transition does not raise."""
        validate_link_transition("link-1", LinkStatus.PENDING, LinkStatus.LINKED)

    def test_invalid_transition_raises(self) -> None:
        """Invalid transition raises with details."""
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_link_transition("link-1", LinkStatus.LINKED, LinkStatus.FAILED)

        error = exc_info.value
        assert error.details["entity_type"] == "Link"
        assert error.details["entity_id"] == "link-1"
        assert error.details["current_state"] == "linked"
        assert error.details["target_state"] == "failed"
        assert error.details["allowed_transitions"] == []


class TestStateTransition:
    """Tests for StateTransition record."""

    def test_string_form(self) -> None:
        """Transition renders from, trigger and to."""
        transition = StateTransition(
            from_state=LinkStatus.PENDING,
            to_state=LinkStatus.LINKED,
            trigger="mark_status",
        )
        assert str(transition) == "pending --[mark_status]--> linked"


class TestSeverity:
    """Tests for Severity ordering."""

    def test_rank_orders_most_severe_first(self) -> None:
        """Critical sorts before warning, warning before info."""
        ordered = sorted([Severity.INFO, Severity.CRITICAL, Severity.WARNING], key=lambda s: s.rank)
        assert ordered == [Severity.CRITICAL, Severity.WARNING, Severity.INFO]
