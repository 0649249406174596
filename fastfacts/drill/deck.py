"""
Fact decks.

A deck is the reference set of facts for a track. Decks come from JSON
files exported by the content team, or are built on the fly for the
standard 0-12 tables.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

from loguru import logger

from fastfacts.core.errors import InvariantViolation

from .facts import Fact, Operation


class FactDeck:
    """Ordered, de-duplicated collection of facts."""

    def __init__(self, facts: list[Fact] | None = None, name: str = "deck"):
        self.name = name
        self._facts: dict[str, Fact] = {}
        for fact in facts or []:
            self.add(fact)

    def __len__(self) -> int:
        return len(self._facts)

    def __iter__(self) -> Iterator[Fact]:
        return iter(self._facts.values())

    def __contains__(self, fact_id: str) -> bool:
        return fact_id in self._facts

    def add(self, fact: Fact) -> None:
        if fact.fact_id in self._facts:
            logger.warning("Duplicate fact id {} in {}, keeping the first", fact.fact_id, self.name)
            return
        self._facts[fact.fact_id] = fact

    def get(self, fact_id: str) -> Fact | None:
        return self._facts.get(fact_id)

    @property
    def fact_ids(self) -> list[str]:
        return list(self._facts)

    @classmethod
    def from_records(cls, records: list[dict], name: str = "deck") -> FactDeck:
        """Build a deck from JSON records, skipping malformed ones."""
        deck = cls(name=name)
        skipped = 0
        for record in records:
            try:
                fact = Fact.from_dict(record)
            except (InvariantViolation, KeyError, TypeError, ValueError) as e:
                skipped += 1
                logger.warning("Skipping malformed fact record in {}: {}", name, e)
                continue
            deck.add(fact)
        if skipped:
            logger.warning("{}: skipped {} of {} records", name, skipped, len(records))
        return deck

    @classmethod
    def load(cls, path: Path | str) -> FactDeck:
        """
        Load a deck from a JSON file.

        The file holds either a list of fact objects or ``{"facts": [...]}``.

        Raises:
            FileNotFoundError: If the file does not exist
            InvariantViolation: If the top-level shape is not recognised
        """
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get("facts")
        if not isinstance(data, list):
            raise InvariantViolation(f"{path.name}: expected a list of facts")

        deck = cls.from_records(data, name=path.stem)
        logger.info("Loaded {} facts from {}", len(deck), path)
        return deck

    @classmethod
    def build_track(cls, operation: Operation | str, max_operand: int = 12) -> FactDeck:
        return build_track(operation, max_operand)

    def to_records(self) -> list[dict]:
        return [fact.to_dict() for fact in self]


def build_track(operation: Operation | str, max_operand: int = 12, name: str | None = None) -> FactDeck:
    """
    Build the standard table for an operation.

    Addition and multiplication list each unordered pair once (3+4, not
    4+3) since both directions are drilled anyway. Subtraction and
    division are built as inverses of addition and multiplication, so
    every result is a whole, non-negative number.
    """
    operation = Operation.parse(operation)
    if max_operand < 0:
        raise InvariantViolation(f"max_operand must be non-negative, got {max_operand}")

    prefix = operation.value[:3].upper()
    facts: list[Fact] = []
    for a in range(max_operand + 1):
        for b in range(a, max_operand + 1):
            if operation in (Operation.ADDITION, Operation.MULTIPLICATION):
                pairs = [(a, b)]
            elif operation is Operation.SUBTRACTION:
                # (a + b) - b for both orders of a and b
                pairs = [(a + b, b)] if a == b else [(a + b, b), (a + b, a)]
            else:
                pairs = []
                if b > 0:
                    pairs.append((a * b, b))
                if a > 0 and a != b:
                    pairs.append((a * b, a))
            for op1, op2 in pairs:
                facts.append(
                    Fact(
                        fact_id=f"{prefix}-{op1}-{op2}",
                        operation=operation,
                        operand1=op1,
                        operand2=op2,
                        result=operation.apply(op1, op2),
                    )
                )

    deck = FactDeck(facts, name=name or f"{operation.value}-{max_operand}")
    logger.debug("Built {} track with {} facts", operation.value, len(deck))
    return deck
