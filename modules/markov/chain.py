"""
In-memory n-gram Markov chain.

A context is the tuple of the previous ``order`` tokens. Each context maps to a
node counting how often every following token was observed. Tokens are words
(whitespace split) or, in character mode, single characters.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import ModelEmptyError

MODEL_ORDERS = {
    "bigram": 1,
    "trigram": 2,
    "quadgram": 3,
}
DEFAULT_MODE = "trigram"

Context = Tuple[str, ...]


@dataclass
class TransitionNode:
    total_count: int = 0
    next_token_counts: Dict[str, int] = field(default_factory=dict)

    def add(self, token: str) -> None:
        self.next_token_counts[token] = self.next_token_counts.get(token, 0) + 1
        self.total_count += 1


def order_for_mode(mode: Optional[Union[str, int]]) -> int:
    """Resolve ``bigram``/``trigram``/``quadgram`` (or a bare 1-3) to a context size."""
    if mode is None:
        return MODEL_ORDERS[DEFAULT_MODE]
    if isinstance(mode, int):
        order = mode
    elif str(mode).isdigit():
        order = int(mode)
    else:
        try:
            order = MODEL_ORDERS[str(mode).lower()]
        except KeyError:
            raise ValueError(f"Unknown model mode: {mode}") from None
    if order not in MODEL_ORDERS.values():
        raise ValueError(f"Model order must be 1, 2 or 3, got {order}")
    return order


def tokenize_words(text: Optional[str]) -> List[str]:
    """Whitespace tokenization shared by training and corpus statistics."""
    if not text:
        return []
    return text.split()


class ChainModel:
    def __init__(self, order: int = 2, character_mode: bool = False, rng: Optional[random.Random] = None):
        if order not in MODEL_ORDERS.values():
            raise ValueError(f"Model order must be 1, 2 or 3, got {order}")
        self.order = order
        self.character_mode = character_mode
        self._rng = rng or random.Random()
        self._chain: Dict[Context, TransitionNode] = {}

    def tokenize(self, text: Optional[str]) -> List[str]:
        if self.character_mode:
            return list(text or "")
        return tokenize_words(text)

    def join(self, tokens: Iterable[str]) -> str:
        return ("" if self.character_mode else " ").join(tokens)

    def train(self, text: Optional[str]) -> None:
        tokens = self.tokenize(text)
        if len(tokens) < self.order + 1:
            return

        for i in range(len(tokens) - self.order):
            context = tuple(tokens[i:i + self.order])
            node = self._chain.get(context)
            if node is None:
                node = self._chain[context] = TransitionNode()
            node.add(tokens[i + self.order])

    def train_many(self, texts: Iterable[str]) -> None:
        for text in texts:
            self.train(text)

    def is_empty(self) -> bool:
        return not self._chain

    @property
    def context_count(self) -> int:
        return len(self._chain)

    @property
    def transition_count(self) -> int:
        return sum(len(node.next_token_counts) for node in self._chain.values())

    def transitions(self, context: Sequence[str]) -> Dict[str, int]:
        node = self._chain.get(tuple(context))
        return dict(node.next_token_counts) if node else {}

    def clear(self) -> None:
        self._chain.clear()

    def generate(self, min_length: int = 5, max_length: int = 50,
                 seed: Optional[Union[str, Sequence[str]]] = None) -> str:
        """
        Sample a token sequence of ``min_length``..``max_length`` tokens.

        A seed whose trailing window is a known context is kept as the prefix;
        otherwise generation starts from a random context. Generation stops
        early at a context with no outgoing transitions.
        """
        if self.is_empty():
            raise ModelEmptyError()
        if max_length < min_length:
            max_length = min_length

        seed_tokens = self.tokenize(seed) if isinstance(seed, str) else list(seed or [])
        context = tuple(seed_tokens[-self.order:]) if len(seed_tokens) >= self.order else None

        if context is not None and context in self._chain:
            result = list(seed_tokens)
        else:
            context = self._rng.choice(list(self._chain))
            result = list(context)

        target_length = self._rng.randint(min_length, max_length)
        while len(result) < target_length:
            node = self._chain.get(context)
            if node is None or not node.next_token_counts:
                break
            token = self._sample(node)
            result.append(token)
            context = context[1:] + (token,)

        return self.join(result)

    def _sample(self, node: TransitionNode) -> str:
        thresholds = []
        cumulative = 0.0
        for token, count in node.next_token_counts.items():
            cumulative += count / node.total_count
            thresholds.append((token, cumulative))

        draw = self._rng.random()
        for token, threshold in thresholds:
            if draw <= threshold:
                return token
        # Float rounding can leave the last threshold just under 1.0
        return thresholds[-1][0]
