"""
Facts and Practice Items.

A Fact is one arithmetic equation to memorize. Drills never show a Fact
directly; they show PracticeItems, one per operand order. Commutative
operations produce both directions and each must reach mastery on its
own before the shared fact may advance.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from fastfacts.core.errors import InvariantViolation


class Operation(str, Enum):
    """Arithmetic operation of a fact."""

    ADDITION = "addition"
    SUBTRACTION = "subtraction"
    MULTIPLICATION = "multiplication"
    DIVISION = "division"

    @classmethod
    def parse(cls, value: str | Operation) -> Operation:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvariantViolation(f"Unknown operation: {value!r}") from None

    @property
    def symbol(self) -> str:
        return {
            Operation.ADDITION: "+",
            Operation.SUBTRACTION: "−",
            Operation.MULTIPLICATION: "×",
            Operation.DIVISION: "÷",
        }[self]

    @property
    def is_commutative(self) -> bool:
        return self in (Operation.ADDITION, Operation.MULTIPLICATION)

    def apply(self, a: int, b: int) -> int:
        """Evaluate ``a op b`` (integer division for DIVISION)."""
        if self is Operation.ADDITION:
            return a + b
        if self is Operation.SUBTRACTION:
            return a - b
        if self is Operation.MULTIPLICATION:
            return a * b
        return a // b


@dataclass(frozen=True)
class Fact:
    """Immutable reference fact, e.g. 7 × 8 = 56."""

    fact_id: str
    operation: Operation
    operand1: int
    operand2: int
    result: int

    @classmethod
    def from_dict(cls, data: dict) -> Fact:
        """
        Create a Fact from a JSON record.

        Accepts either ``fact_id`` or the backend's ``PK`` ("FACT#<id>").
        """
        fact_id = data.get("fact_id") or data.get("factId")
        if fact_id is None and "PK" in data:
            fact_id = str(data["PK"]).split("FACT#")[-1]
        if not fact_id:
            raise InvariantViolation(f"Fact record has no id: {data!r}")
        return cls(
            fact_id=str(fact_id),
            operation=Operation.parse(data["operation"]),
            operand1=int(data["operand1"]),
            operand2=int(data["operand2"]),
            result=int(data["result"]),
        )

    def to_dict(self) -> dict:
        return {
            "fact_id": self.fact_id,
            "operation": self.operation.value,
            "operand1": self.operand1,
            "operand2": self.operand2,
            "result": self.result,
        }

    @property
    def is_commutative(self) -> bool:
        return self.operation.is_commutative

    def __str__(self) -> str:
        return f"{self.operand1} {self.operation.symbol} {self.operand2} = {self.result}"


@dataclass(frozen=True)
class PracticeItem:
    """One directional presentation of a fact."""

    id: str
    fact_id: str
    operation: Operation
    operand1: int
    operand2: int
    result: int
    inverted: bool = False

    @property
    def prompt(self) -> str:
        return f"{self.operand1} {self.operation.symbol} {self.operand2}"

    @property
    def tracking_id(self) -> str:
        """Per-direction id used for attempt statistics."""
        return f"{self.fact_id}i" if self.inverted else self.fact_id


def is_commutative(operation: Operation | str) -> bool:
    return Operation.parse(operation).is_commutative


def item_id(operand1: int, operand2: int, operation: Operation) -> str:
    return f"{operand1}-{operand2}-{operation.value}"


def _inverted_id(fact: Fact) -> str:
    candidate = item_id(fact.operand2, fact.operand1, fact.operation)
    if fact.operand1 == fact.operand2:
        # 4+4 swapped is still 4+4; keep the two directions distinct
        return f"{candidate}i"
    return candidate


def permutations_for(fact: Fact) -> list[PracticeItem]:
    """Practice items for a single fact (two if commutative, else one)."""
    operation = Operation.parse(fact.operation)
    original = PracticeItem(
        id=item_id(fact.operand1, fact.operand2, operation),
        fact_id=fact.fact_id,
        operation=operation,
        operand1=fact.operand1,
        operand2=fact.operand2,
        result=fact.result,
    )
    if not operation.is_commutative:
        return [original]

    swapped = PracticeItem(
        id=_inverted_id(fact),
        fact_id=fact.fact_id,
        operation=operation,
        operand1=fact.operand2,
        operand2=fact.operand1,
        result=fact.result,
        inverted=True,
    )
    return [original, swapped]


def generate_permutations(facts: Iterable[Fact]) -> list[PracticeItem]:
    """
    Expand facts into gradable practice items.

    Pure and deterministic: the same facts always give the same items in
    the same order.
    """
    items: list[PracticeItem] = []
    for fact in facts:
        items.extend(permutations_for(fact))
    return items


def sibling_id(item: PracticeItem) -> str | None:
    """
    Id of the other direction of a commutative fact.

    Returns None for non-commutative items, which have no sibling.
    """
    if not item.operation.is_commutative:
        return None
    if item.operand1 == item.operand2:
        base = item_id(item.operand1, item.operand2, item.operation)
        return base if item.inverted else f"{base}i"
    return item_id(item.operand2, item.operand1, item.operation)
