"""Pure loyalty domain helpers (no I/O)."""

from .errors import *  # noqa: F401,F403
from .errors import __all__ as _error_exports
from .geo import haversine_distance_meters  # noqa: F401
from .rewards import RewardConfig, RewardType, SlabRule, calculate_reward_points  # noqa: F401

__all__ = [
    *_error_exports,
    "RewardConfig",
    "RewardType",
    "SlabRule",
    "calculate_reward_points",
    "haversine_distance_meters",
]
