"""Weighted outcome draw."""

import bisect
import itertools
import random
from collections.abc import Sequence

from src.ar_game.domain.outcomes import OUTCOME_TABLE, Outcome


class OutcomeDrawer:
    """Maps one uniform sample onto the cumulative-weight partition of a table.

    The random source is injectable; production uses the OS CSPRNG so the
    server-side draw cannot be predicted from earlier results.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        table: Sequence[Outcome] = OUTCOME_TABLE,
    ) -> None:
        if not table:
            raise ValueError("Outcome table must not be empty")
        if any(o.weight <= 0 for o in table):
            raise ValueError("Outcome weights must be positive")
        self._rng = rng or random.SystemRandom()
        self._table = tuple(table)
        self._cumulative = list(itertools.accumulate(o.weight for o in self._table))
        self._total = self._cumulative[-1]

    @property
    def table(self) -> tuple[Outcome, ...]:
        return self._table

    @property
    def total_weight(self) -> float:
        return self._total

    def draw(self) -> Outcome:
        sample = self._rng.random() * self._total
        return self.outcome_for(sample)

    def outcome_for(self, sample: float) -> Outcome:
        """First outcome whose cumulative weight exceeds `sample`.

        A sample at or past the total (float rounding) falls back to the
        first outcome of the table.
        """
        index = bisect.bisect_right(self._cumulative, sample)
        if index >= len(self._table):
            return self._table[0]
        return self._table[index]
