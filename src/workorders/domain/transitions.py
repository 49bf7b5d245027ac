"""
Work Order Transitions
======================

Pure workflow rules for work order status changes.

The core state machine only ever sees canonical ``WorkOrderStatus`` values;
legacy aliases are folded in by ``normalize_legacy_status`` at the boundary.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Union

from src.config import FINAL_STATUSES, LEGACY_STATUS_ALIASES, WorkOrderStatus
from src.core import ValidationException


def normalize_legacy_status(raw: Union[str, WorkOrderStatus, None]) -> WorkOrderStatus:
    """
    Map a raw status string (canonical or legacy alias) onto ``WorkOrderStatus``.

    Raises:
        ValidationException: If the value is empty or not a known status
    """
    if isinstance(raw, WorkOrderStatus):
        return raw
    value = str(raw or "").strip().lower()
    if not value:
        raise ValidationException("status must not be empty")
    if value in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[value]
    try:
        return WorkOrderStatus(value)
    except ValueError:
        raise ValidationException(
            f"unknown status '{raw}'",
            {"allowed": [s.value for s in WorkOrderStatus]}
        )


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition check: ok, or rejected with a reason."""
    ok: bool
    reason: Optional[str] = None

    @classmethod
    def accepted(cls) -> "TransitionResult":
        return cls(ok=True)

    @classmethod
    def rejected(cls, reason: str) -> "TransitionResult":
        return cls(ok=False, reason=reason)


class TransitionValidator:
    """
    Validates a requested status change against the forward-only workflow.

    Rules are evaluated in order:
    1. closed/cancelled orders are finalized
    2. cancellation is allowed from any non-final status
    3. pausing is only allowed from in_execution
    4. a paused order can only resume to in_execution
    5. everything else must appear in ``ALLOWED_NEXT``
    """

    ALLOWED_NEXT: Dict[WorkOrderStatus, FrozenSet[WorkOrderStatus]] = {
        WorkOrderStatus.OPEN: frozenset({WorkOrderStatus.IN_ANALYSIS}),
        WorkOrderStatus.IN_ANALYSIS: frozenset({WorkOrderStatus.IN_EXECUTION}),
        WorkOrderStatus.IN_EXECUTION: frozenset({
            WorkOrderStatus.COMPLETED, WorkOrderStatus.PAUSED
        }),
        WorkOrderStatus.COMPLETED: frozenset({WorkOrderStatus.CLOSED}),
    }

    @staticmethod
    def _arrow(current: WorkOrderStatus, requested: WorkOrderStatus) -> str:
        return f"{current.value} → {requested.value}"

    @classmethod
    def validate(
        cls,
        current: WorkOrderStatus,
        requested: WorkOrderStatus
    ) -> TransitionResult:
        """
        Check whether ``current -> requested`` is a legal status change.

        Args:
            current: Canonical status currently stored on the order
            requested: Canonical status the caller asked for

        Returns:
            TransitionResult: accepted, or rejected with a reason naming both statuses
        """
        if current == requested:
            return TransitionResult.accepted()

        if current in FINAL_STATUSES:
            return TransitionResult.rejected(
                f"order already finalized ({cls._arrow(current, requested)})"
            )

        if requested == WorkOrderStatus.CANCELLED:
            return TransitionResult.accepted()

        if requested == WorkOrderStatus.PAUSED:
            if current != WorkOrderStatus.IN_EXECUTION:
                return TransitionResult.rejected(
                    f"can only pause an order in execution ({cls._arrow(current, requested)})"
                )
            return TransitionResult.accepted()

        if current == WorkOrderStatus.PAUSED:
            if requested != WorkOrderStatus.IN_EXECUTION:
                return TransitionResult.rejected(
                    "a paused order can only resume to in_execution "
                    f"({cls._arrow(current, requested)})"
                )
            return TransitionResult.accepted()

        if requested not in cls.ALLOWED_NEXT.get(current, frozenset()):
            return TransitionResult.rejected(
                f"invalid transition: {cls._arrow(current, requested)}"
            )

        return TransitionResult.accepted()
