from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

BALANCE_OPERATION_SET = "set"
BALANCE_OPERATION_ADD = "add"
BALANCE_OPERATION_SUBTRACT = "subtract"
BALANCE_OPERATIONS = frozenset(
    {BALANCE_OPERATION_SET, BALANCE_OPERATION_ADD, BALANCE_OPERATION_SUBTRACT}
)


@dataclass(slots=True)
class BalanceAdjustmentResult:
    user_id: int
    operation: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
