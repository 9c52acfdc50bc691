import enum
from typing import Generic, TypeVar

from procure_ledger.core.errors import ConflictError, ValidationError
from procure_ledger.models.goods_receipt import GoodsReceiptStatus
from procure_ledger.models.matching import ApprovalStatus

S = TypeVar("S", bound=enum.Enum)


class StateMachine(Generic[S]):
    """Allowed forward transitions between the states of one enum.

    A state with no outgoing transitions is terminal; leaving it is a conflict.
    """

    def __init__(self, name: str, transitions: dict[S, frozenset[S]]):
        self.name = name
        self._transitions = transitions

    def allowed_from(self, current: S) -> frozenset[S]:
        return self._transitions.get(current, frozenset())

    def can_transition_to(self, current: S, target: S) -> bool:
        return target in self.allowed_from(current)

    def is_terminal(self, state: S) -> bool:
        return not self.allowed_from(state)

    def validate_transition(self, current: S, target: S) -> None:
        if self.can_transition_to(current, target):
            return
        details = {"from": current.value, "to": target.value, "machine": self.name}
        if self.is_terminal(current):
            raise ConflictError(
                f"{self.name} is already {current.value}; cannot move to {target.value}.",
                code="INVALID_TRANSITION",
                details=details,
            )
        raise ValidationError(
            f"{self.name} cannot move from {current.value} to {target.value}.",
            code="INVALID_TRANSITION",
            details=details,
        )


goods_receipt_state_machine: StateMachine[GoodsReceiptStatus] = StateMachine(
    "Goods receipt",
    {
        GoodsReceiptStatus.PENDING: frozenset({GoodsReceiptStatus.IN_PROGRESS}),
        GoodsReceiptStatus.IN_PROGRESS: frozenset(
            {GoodsReceiptStatus.COMPLETED, GoodsReceiptStatus.ISSUES_FOUND}
        ),
        GoodsReceiptStatus.ISSUES_FOUND: frozenset(
            {GoodsReceiptStatus.IN_PROGRESS, GoodsReceiptStatus.COMPLETED}
        ),
        GoodsReceiptStatus.COMPLETED: frozenset(),
    },
)

match_approval_state_machine: StateMachine[ApprovalStatus] = StateMachine(
    "Match approval",
    {
        ApprovalStatus.PENDING: frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED}),
        ApprovalStatus.APPROVED: frozenset(),
        ApprovalStatus.REJECTED: frozenset(),
        ApprovalStatus.NOT_REQUIRED: frozenset(),
    },
)
