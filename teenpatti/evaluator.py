from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence, Tuple

from .cards import Card, parse_cards


class HandCategory(IntEnum):
    HIGH_CARD = 1
    PAIR = 2
    COLOR = 3
    SEQUENCE = 4
    PURE_SEQUENCE = 5
    TRAIL = 6


@dataclass(frozen=True)
class HandRank:
    category: HandCategory
    tiebreak: Tuple[int, ...]
    sorted_cards: Tuple[Card, ...]

    @property
    def key(self) -> Tuple[int, Tuple[int, ...]]:
        return (int(self.category), self.tiebreak)


def evaluate(cards: Sequence[Card]) -> HandRank:
    """Rank a three-card Teen Patti hand. Higher ``key`` is better."""
    if len(cards) != 3:
        raise ValueError("A Teen Patti hand has exactly 3 cards")
    if len(set(cards)) != 3:
        raise ValueError("Duplicate cards in hand")

    ordered = tuple(sorted(cards, key=lambda card: card.value, reverse=True))
    high, mid, low = (card.value for card in ordered)
    values = (high, mid, low)

    same_suit = len({card.suit for card in ordered}) == 1
    # A-2-3 is the lowest run; the ace plays as 1 there.
    ace_low = values == (14, 3, 2)
    is_run = (high - mid == 1 and mid - low == 1) or ace_low
    run_key = (3, 2, 1) if ace_low else values

    if high == mid == low:
        return HandRank(HandCategory.TRAIL, (high,), ordered)
    if is_run and same_suit:
        return HandRank(HandCategory.PURE_SEQUENCE, run_key, ordered)
    if is_run:
        return HandRank(HandCategory.SEQUENCE, run_key, ordered)
    if same_suit:
        return HandRank(HandCategory.COLOR, values, ordered)
    if high == mid:
        return HandRank(HandCategory.PAIR, (high, low), ordered)
    if mid == low:
        return HandRank(HandCategory.PAIR, (mid, high), ordered)
    return HandRank(HandCategory.HIGH_CARD, values, ordered)


def compare(a: HandRank, b: HandRank) -> int:
    if a.key > b.key:
        return 1
    if a.key < b.key:
        return -1
    return 0


def evaluate_labels(labels: Sequence[str]) -> HandRank:
    return evaluate(parse_cards(labels))


def describe_rank(rank: HandRank) -> str:
    return rank.category.name.lower()

