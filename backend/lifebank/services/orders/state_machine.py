"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class deciding whether an order
status change is legal. It performs no I/O: the orchestrator consults it
before anything is written.
"""

from typing import Any, Dict, List, Sequence, Set

from lifebank.core.logging import get_logger
from lifebank.services.orders.enums import (
    ORDER_STATUS_TRANSITIONS,
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)

logger = get_logger(__name__)


class StateMachineError(Exception):
    """Base exception for state machine failures."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class TransitionRejectedError(StateMachineError):
    """Raised when an illegal status transition is attempted.

    Carries the complete set of legal alternatives from the current status so
    callers can present actionable guidance.
    """

    def __init__(
        self,
        attempted_from: OrderStatus,
        attempted_to: OrderStatus,
        allowed_transitions: Set[OrderStatus],
    ):
        super().__init__(
            f"Invalid transition from '{attempted_from.value}' to "
            f"'{attempted_to.value}'",
            code="TRANSITION_REJECTED",
            attempted_from=attempted_from.value,
            attempted_to=attempted_to.value,
        )
        self.attempted_from = attempted_from
        self.attempted_to = attempted_to
        self.allowed_transitions = set(allowed_transitions)

    def ordered_alternatives(self) -> List[OrderStatus]:
        """Legal alternatives in lifecycle order."""
        return [
            status
            for status in ORDER_STATUS_TRANSITIONS.get(self.attempted_from, ())
            if status in self.allowed_transitions
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Serializable rejection detail for boundary layers."""
        return {
            "message": str(self),
            "error": self.code,
            "attempted_from": self.attempted_from.value,
            "attempted_to": self.attempted_to.value,
            "allowed_transitions": [s.value for s in self.ordered_alternatives()],
        }


class EmptyReplayError(StateMachineError):
    """Raised when replay is asked to derive a status from no statuses."""

    def __init__(self):
        super().__init__(
            "Cannot replay state: status sequence is empty",
            code="EMPTY_REPLAY",
        )


class OrderStateMachine:
    """State machine for order lifecycle transitions.

    The transition table in ``lifebank.services.orders.enums`` is the only
    source of truth: no self-loops, no skipped stages, nothing leaves a
    terminal state.
    """

    def allowed_transitions(self, status: OrderStatus) -> Set[OrderStatus]:
        """Get allowed transitions from a status.

        Args:
            status: Current order status

        Returns:
            Set of allowed next statuses; empty for terminal states
        """
        return get_allowed_order_transitions(status)

    def transition(
        self,
        current: OrderStatus,
        next_status: OrderStatus,
    ) -> OrderStatus:
        """Validate the transition ``current -> next_status``.

        Args:
            current: Current order status
            next_status: Desired next status

        Returns:
            ``next_status`` when the edge is legal

        Raises:
            TransitionRejectedError: If the edge is not in the transition table
        """
        if not validate_order_status_transition(current, next_status):
            allowed = self.allowed_transitions(current)
            logger.debug(
                "State transition rejected",
                attempted_from=current.value,
                attempted_to=next_status.value,
                allowed_transitions=sorted(s.value for s in allowed),
            )
            raise TransitionRejectedError(current, next_status, allowed)

        return next_status

    def replay(self, ordered_statuses: Sequence[OrderStatus]) -> OrderStatus:
        """Derive the current status from an ordered status sequence.

        Consecutive entries are not re-validated; the sequence is expected to
        come from a writer that already enforced legality.

        Raises:
            EmptyReplayError: If the sequence is empty
        """
        if not ordered_statuses:
            raise EmptyReplayError()
        return ordered_statuses[-1]
