"""The fixed outcome table.

Weights are relative, not percentages: the drawer normalises by their sum.
Regular outcomes come first in table order, then the two festival
composites. Only regular outcomes accept wagers; a festival draw means every
wager of the round loses.
"""

from dataclasses import dataclass

from src.ar_common.enums import OutcomeKind
from src.ar_common.errors import InvalidOutcomeError


@dataclass(frozen=True)
class Outcome:
    id: str
    display_label: str
    weight: float
    payout_multiplier: float
    kind: OutcomeKind = OutcomeKind.REGULAR
    members: tuple[str, ...] = ()   # festival composites only

    @property
    def is_wagerable(self) -> bool:
        return self.kind == OutcomeKind.REGULAR


REGULAR_OUTCOMES: tuple[Outcome, ...] = (
    Outcome("turtle", "🐢 Turtle", 19.4, 5),
    Outcome("hedgehog", "🦔 Hedgehog", 19.4, 5),
    Outcome("raccoon", "🦝 Raccoon", 19.4, 5),
    Outcome("elephant", "🐘 Elephant", 19.4, 5),
    Outcome("cat", "😼 Cat", 9.7, 10),
    Outcome("fox", "🦊 Fox", 6.5, 15),
    Outcome("pig", "🐖 Pig", 3.9, 25),
    Outcome("lion", "🦁 Lion", 2.2, 45),
)

FESTIVAL_OUTCOMES: tuple[Outcome, ...] = (
    Outcome(
        "vegetarian_festival", "🐢🦔🦝🐘 Vegetarian Festival", 0.05, 20,
        OutcomeKind.FESTIVAL, ("turtle", "hedgehog", "raccoon", "elephant"),
    ),
    Outcome(
        "carnivorous_festival", "😼🦊🐖🦁 Carnivorous Festival", 0.05, 95,
        OutcomeKind.FESTIVAL, ("cat", "fox", "pig", "lion"),
    ),
)

OUTCOME_TABLE: tuple[Outcome, ...] = REGULAR_OUTCOMES + FESTIVAL_OUTCOMES

OUTCOMES_BY_ID: dict[str, Outcome] = {o.id: o for o in OUTCOME_TABLE}

WAGERABLE_OUTCOME_IDS: frozenset[str] = frozenset(o.id for o in REGULAR_OUTCOMES)


def get_outcome(outcome_id: str) -> Outcome:
    """Look up any outcome in the table, festival composites included."""
    try:
        return OUTCOMES_BY_ID[outcome_id]
    except KeyError:
        raise InvalidOutcomeError(outcome_id) from None


def get_wagerable_outcome(outcome_id: str) -> Outcome:
    """Look up an outcome a player may stake on."""
    outcome = get_outcome(outcome_id)
    if not outcome.is_wagerable:
        raise InvalidOutcomeError(outcome_id)
    return outcome
