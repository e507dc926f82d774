"""Reward mapping exports."""

from .resolver import (  # noqa: F401
    DEFAULT_REWARD_MAP,
    RewardMatch,
    RewardResolver,
    load_reward_map,
    normalize_title,
    strip_emoji,
)
