"""Staking Program State."""

from typing import NamedTuple

from construct import Bytes, Flag, Int64sl, Int64ul, Struct  # type: ignore

from solders.pubkey import Pubkey

from ledger.errors import ConfigError

PUBLIC_KEY_LAYOUT = Bytes(32)


STAKING_STATE_LAYOUT = Struct(
    "is_initialized" / Flag,
    "authority" / PUBLIC_KEY_LAYOUT,
    "mint" / PUBLIC_KEY_LAYOUT,
    "staking_period" / Int64ul,
    "reward_rate" / Int64ul,
)

STAKE_ACCOUNT_LAYOUT = Struct(
    "is_initialized" / Flag,
    "owner" / PUBLIC_KEY_LAYOUT,
    "state" / PUBLIC_KEY_LAYOUT,
    "amount" / Int64ul,
    "start_time" / Int64sl,
    "last_claim_time" / Int64sl,
)


class StakingState(NamedTuple):
    """Global staking configuration, written by the program on Initialize."""
    is_initialized: bool
    authority: Pubkey
    mint: Pubkey
    staking_period: int
    reward_rate: int

    @classmethod
    def decode(cls, data: bytes):
        parsed = STAKING_STATE_LAYOUT.parse(data)
        return StakingState(
            is_initialized=parsed['is_initialized'],
            authority=Pubkey(parsed['authority']),
            mint=Pubkey(parsed['mint']),
            staking_period=parsed['staking_period'],
            reward_rate=parsed['reward_rate'],
        )


class StakeAccount(NamedTuple):
    """A user's stake, written by the program on CreateStakeAccount."""
    is_initialized: bool
    owner: Pubkey
    state: Pubkey
    amount: int
    start_time: int
    last_claim_time: int

    @classmethod
    def decode(cls, data: bytes):
        parsed = STAKE_ACCOUNT_LAYOUT.parse(data)
        return StakeAccount(
            is_initialized=parsed['is_initialized'],
            owner=Pubkey(parsed['owner']),
            state=Pubkey(parsed['state']),
            amount=parsed['amount'],
            start_time=parsed['start_time'],
            last_claim_time=parsed['last_claim_time'],
        )


def validate_account_size(name: str, size: int, layout: Struct):
    """Rejects account sizes too small to hold `layout`."""
    if size < layout.sizeof():
        raise ConfigError(f"{name} of {size} bytes cannot hold its {layout.sizeof()} byte layout")
