"""
Document-number formats.

A sequence identifier is ``<PREFIX><separator><zero-padded number>``,
e.g. ``PUR-000042``.  Because every value of a class has the same prefix
and width, lexicographic order equals numeric order, which is what lets
the generator find the latest value with a plain ``ORDER BY ... DESC``.

Numbers that no longer fit the width are refused rather than widened;
a wider value would sort before shorter ones and break that ordering.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from trade_kernel.exceptions import SequenceExhaustedError, SequenceFormatError


@dataclass(frozen=True)
class SequenceFormat:
    entity_class: str
    prefix: str
    width: int = 6
    separator: str = "-"

    def __post_init__(self) -> None:
        if self.width < 1:
            raise ValueError(f"Sequence width must be >= 1, got {self.width}")
        if not self.prefix:
            raise ValueError("Sequence prefix must not be empty")

    @property
    def max_number(self) -> int:
        return 10 ** self.width - 1

    @property
    def lock_name(self) -> str:
        return f"{self.entity_class}_number_generation"

    @property
    def _pattern(self) -> re.Pattern[str]:
        return re.compile(
            rf"^{re.escape(self.prefix)}{re.escape(self.separator)}(\d{{{self.width}}})$"
        )

    def format(self, number: int) -> str:
        if number < 1:
            raise ValueError(f"Sequence numbers start at 1, got {number}")
        if number > self.max_number:
            raise SequenceExhaustedError(
                self.entity_class, self.format(self.max_number), self.max_number,
            )
        return f"{self.prefix}{self.separator}{number:0{self.width}d}"

    def parse(self, value: str) -> int:
        match = self._pattern.match(value or "")
        if match is None:
            raise SequenceFormatError(self.entity_class, value)
        return int(match.group(1))

    def next_after(self, latest: str | None) -> str:
        """Value that follows ``latest``; the first value when there is none."""
        if latest is None:
            return self.format(1)
        current = self.parse(latest)
        if current >= self.max_number:
            raise SequenceExhaustedError(self.entity_class, latest, self.max_number)
        return self.format(current + 1)
