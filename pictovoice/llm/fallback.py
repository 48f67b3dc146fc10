"""
pictovoice/llm/fallback.py — Deterministic local phrase composition.

Used whenever the remote phrase service is unavailable, fails, or times
out, and by the proxy server when its own model cannot answer. Pure and
offline: the same concepts always produce the same sentence, and no input
can make it fail.
"""

from __future__ import annotations

import logging
from typing import List, NamedTuple, Sequence

logger = logging.getLogger(__name__)


class _Rule(NamedTuple):
    """
    A single rule of the local fallback table.

    Attributes:
        name: Short identifier used in log entries.
        requires: Concept keys that must all be present (order-insensitive).
        sentence: The phrase produced when the rule matches.
    """

    name: str
    requires: frozenset
    sentence: str


def _rule(name: str, sentence: str, *keys: str) -> _Rule:
    return _Rule(name=name, requires=frozenset(keys), sentence=sentence)


# Priority-ordered rules — first match wins.
_RULES: List[_Rule] = [
    _rule("self_water",    "Please, I need a glass of water.",        "self", "water"),
    _rule("self_food",     "Please, I need a plate of food.",         "self", "food"),
    _rule("you_water",     "Could you bring me a glass of water, please?", "you", "water"),
    _rule("self_bathroom", "I need to go to the bathroom, please.",   "self", "bathroom"),
    _rule("self_tv",       "I want to watch TV.",                     "self", "tv"),
    _rule("self_sleep",    "I am sleepy, I want to sleep.",           "self", "sleep"),
    _rule("self_help",     "Please, I need help.",                    "self", "help"),
    _rule("self_pain",     "Something hurts, I don't feel well.",     "self", "pain"),
    _rule("self_hot",      "I feel very hot.",                        "self", "hot"),
    _rule("you_help",      "Could you help me, please?",              "you", "help"),
    _rule("you_food",      "Could you bring me some food, please?",   "you", "food"),
    _rule("yes",           "Yes, please.",                            "yes"),
    _rule("no",            "No, thank you.",                          "no"),
]


def compose_local(concepts: Sequence[str]) -> str:
    """
    Compose a sentence for *concepts* without any network access.

    Args:
        concepts: Ordered concept keys (any length, unknown keys allowed).

    Returns:
        The first matching rule's sentence, or the generic
        ``"I want to say: a, b, c."`` listing the concepts in order.
    """
    present = set(concepts)
    for rule in _RULES:
        if rule.requires <= present:
            logger.debug("Local fallback rule %s matched %s", rule.name, list(concepts))
            return rule.sentence
    return f"I want to say: {', '.join(concepts)}."
