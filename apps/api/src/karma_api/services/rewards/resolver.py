"""Reward title → karma delta resolution with accent- and emoji-insensitive matching."""

from __future__ import annotations

import json
import re
import unicodedata
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from loguru import logger

from karma_api.domain import to_decimal

DEFAULT_REWARD_MAP: dict[str, float] = {
    "heal💓": 0.250,
    "heal": 0.250,
    "eat🍏": 0.150,
    "eat": 0.150,
    "hydrate💧": 0.100,
    "hydrate": 0.100,
    "🔥👋A Hello!👋🔥": 0.050,
    "hello": 0.050,
    "bleed🩸": -0.250,
    "bleed": -0.250,
    "thirst🥵": -0.150,
    "thirst": -0.150,
    "hunger🦴": -0.100,
    "hunger": -0.100,
}

_EMOJI_PATTERN = re.compile(
    "["
    "\U0001F000-\U0001FAFF"  # pictographs, emoticons, transport, flags, supplemental symbols
    "\u2600-\u27BF"  # misc symbols, dingbats
    "\u2300-\u23FF"  # misc technical (watch, hourglass, alarm clock)
    "\u2B00-\u2BFF"  # arrows and shapes (star, heavy circle)
    "\u00A9\u00AE\u203C\u2049\u2122\u2139\u3030\u303D\u3297\u3299"
    "\u200D"  # zero width joiner
    "\uFE0E\uFE0F"  # variation selectors
    "\u20E3"  # combining keycap
    "\U000E0020-\U000E007F"  # tag sequences
    "]+"
)

_ZERO = Decimal("0")


def normalize_title(title: str | None) -> str:
    """Decompose, drop combining marks, case fold and trim."""

    decomposed = unicodedata.normalize("NFKD", str(title or ""))
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return stripped.casefold().strip()


def strip_emoji(normalized: str) -> str:
    return _EMOJI_PATTERN.sub("", normalized).strip()


@dataclass(frozen=True, slots=True)
class RewardMatch:
    normalized_key: str
    delta: Decimal

    @property
    def is_mapped(self) -> bool:
        return self.delta != _ZERO


class RewardResolver:
    """Resolve raw reward titles against an operator-supplied mapping."""

    def __init__(self, reward_map: Mapping[str, object]) -> None:
        self._table: dict[str, Decimal] = {}
        for raw_key, raw_value in reward_map.items():
            try:
                delta = to_decimal(raw_value)
            except ValueError:
                logger.warning("Skipping reward mapping with invalid delta", reward=raw_key, value=raw_value)
                continue
            normalized = normalize_title(raw_key)
            for key in (normalized, strip_emoji(normalized)):
                if key:
                    self._table[key] = delta

    @classmethod
    def from_json(cls, raw_json: str | None) -> "RewardResolver":
        return cls(load_reward_map(raw_json))

    @property
    def keys(self) -> list[str]:
        return sorted(self._table)

    def match(self, title: str | None) -> RewardMatch:
        key = normalize_title(title)
        delta = self._table.get(key)
        if delta is None:
            delta = self._table.get(strip_emoji(key), _ZERO)
        return RewardMatch(normalized_key=key, delta=delta)

    def resolve(self, title: str | None) -> Decimal:
        return self.match(title).delta


def load_reward_map(raw_json: str | None) -> dict[str, object]:
    """Parse a JSON reward map, falling back to the built-in defaults."""

    if not raw_json:
        return dict(DEFAULT_REWARD_MAP)
    try:
        parsed = json.loads(raw_json)
    except json.JSONDecodeError as error:
        logger.warning("REWARD_MAP_JSON is not valid JSON; using defaults", error=str(error))
        return dict(DEFAULT_REWARD_MAP)
    if not isinstance(parsed, dict):
        logger.warning("REWARD_MAP_JSON must be a JSON object; using defaults", kind=type(parsed).__name__)
        return dict(DEFAULT_REWARD_MAP)
    return parsed


__all__ = [
    "DEFAULT_REWARD_MAP",
    "RewardMatch",
    "RewardResolver",
    "load_reward_map",
    "normalize_title",
    "strip_emoji",
]
