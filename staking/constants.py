"""Staking Program Constants."""

STATE_ACCOUNT_LEN: int = 1000
"""Default size of the global staking state account."""

STAKE_ACCOUNT_LEN: int = 1000
"""Default size of a per-user stake account."""

DEFAULT_STAKING_PERIOD: int = 86400
"""Staking period in seconds, 24 hours."""

DEFAULT_REWARD_RATE: int = 500
"""Reward rate in parts per thousand."""

U64_MAX: int = 2 ** 64 - 1
"""Largest value of an unsigned 64-bit field."""
