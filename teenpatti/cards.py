from __future__ import annotations

import itertools
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

RANKS = "23456789TJQKA"
SUITS = "shdc"
RANK_VALUE = {rank: value for value, rank in enumerate(RANKS, start=2)}


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    def __post_init__(self) -> None:
        if self.rank not in RANK_VALUE:
            raise ValueError(f"Invalid rank: {self.rank!r}")
        if self.suit not in SUITS:
            raise ValueError(f"Invalid suit: {self.suit!r}")

    @property
    def label(self) -> str:
        return self.rank + self.suit

    @property
    def value(self) -> int:
        # Ace is high; the A-2-3 run is special-cased by the evaluator.
        return RANK_VALUE[self.rank]


def build_deck(seed: Optional[int] = None) -> List[Card]:
    deck = [Card(rank, suit) for rank, suit in itertools.product(RANKS, SUITS)]
    random.Random(seed).shuffle(deck)
    return deck


def deal(deck: List[Card], count: int) -> List[Card]:
    """Take ``count`` cards off the top of ``deck`` in place."""
    if count > len(deck):
        raise ValueError(f"Not enough cards left in deck ({len(deck)} < {count})")
    dealt, deck[:] = deck[:count], deck[count:]
    return dealt


def cards_to_labels(cards: Sequence[Card]) -> List[str]:
    return [card.label for card in cards]


def parse_label(label: str) -> Card:
    # Operators type tens either way: "Th" or "10h".
    text = label.strip()
    if text[:2] == "10":
        text = "T" + text[2:]
    if len(text) != 2:
        raise ValueError(f"Invalid card label: {label}")
    return Card(text[0].upper(), text[1].lower())


def parse_cards(labels: Sequence[str]) -> List[Card]:
    return [parse_label(label) for label in labels]
