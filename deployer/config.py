"""Deployment configuration."""

from enum import IntEnum
from typing import NamedTuple, Optional, Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ledger.client import CLUSTERS, DEFAULT_TIMEOUT
from ledger.errors import ConfigError
from loader.constants import BPF_LOADER_UPGRADEABLE_PROGRAM_ID, SUPPORTED_LOADERS
from staking.constants import DEFAULT_REWARD_RATE, DEFAULT_STAKING_PERIOD, STAKE_ACCOUNT_LEN, STATE_ACCOUNT_LEN
from staking.state import STAKE_ACCOUNT_LAYOUT, STAKING_STATE_LAYOUT, validate_account_size

NO_FAUCET_CLUSTERS = ("mainnet-beta",)
"""Clusters without an airdrop faucet."""


class Step(IntEnum):
    """Deployment steps, in the order they run."""

    CONNECT = 0
    FUND = 1
    DEPLOY = 2
    INITIALIZE = 3
    CREATE_STAKE_ACCOUNTS = 4


DEFAULT_STEPS: Tuple[Step, ...] = tuple(Step)

STEP_NAMES = {
    "connect": Step.CONNECT,
    "fund": Step.FUND,
    "deploy": Step.DEPLOY,
    "initialize": Step.INITIALIZE,
    "stake": Step.CREATE_STAKE_ACCOUNTS,
}


class DeployConfig(NamedTuple):
    """Which steps to run and the inputs they need."""

    cluster: str = "localnet"
    """One of `localnet`, `devnet`, `testnet`, `mainnet-beta`."""
    endpoint: Optional[str] = None
    """RPC endpoint overriding the cluster's default."""
    keypair_path: str = "deployer-keypair.json"
    """Payer keypair file, created on first run."""
    program_path: Optional[str] = None
    """Compiled program bytecode, required by the deploy step."""
    steps: Tuple[Step, ...] = DEFAULT_STEPS

    airdrop: bool = True
    """Request faucet funds when the balance is low. Must be off where there is no faucet."""
    min_balance_sol: float = 2.0
    airdrop_sol: float = 2.0

    staking_period: int = DEFAULT_STAKING_PERIOD
    reward_rate: int = DEFAULT_REWARD_RATE
    mint: Optional[Pubkey] = None
    """Token mint handed to Initialize; a placeholder address is generated when unset."""
    users: Tuple[Keypair, ...] = ()
    """Users that get a stake account, each co-signing its creation."""

    program_id: Optional[Pubkey] = None
    """Already deployed program, used when the deploy step is skipped."""
    state_account: Optional[Pubkey] = None
    """Already initialized state account, used when the initialize step is skipped."""
    state_account_size: int = STATE_ACCOUNT_LEN
    stake_account_size: int = STAKE_ACCOUNT_LEN
    loader_id: Pubkey = BPF_LOADER_UPGRADEABLE_PROGRAM_ID
    """Loader that owns the deployed program."""

    timeout: float = DEFAULT_TIMEOUT
    """Seconds allowed for any single ledger call."""
    manifest_path: Optional[str] = None
    """Records completed steps so a rerun skips them."""

    def validate(self):
        if self.cluster not in CLUSTERS:
            raise ConfigError(f"Unknown cluster {self.cluster!r}, expected one of {', '.join(CLUSTERS)}")
        if list(self.steps) != sorted(set(self.steps)):
            raise ConfigError("Steps must be distinct and in pipeline order")
        if self.steps and Step.CONNECT not in self.steps:
            raise ConfigError("Every deployment step needs the connect step")
        if Step.FUND in self.steps and self.airdrop and self.cluster in NO_FAUCET_CLUSTERS:
            raise ConfigError(f"{self.cluster} has no faucet, disable airdrops explicitly")
        if Step.DEPLOY in self.steps and not self.program_path:
            raise ConfigError("The deploy step needs a program bytecode path")
        if self.min_balance_sol < 0 or self.airdrop_sol < 0:
            raise ConfigError("Balances must not be negative")
        if self.timeout <= 0:
            raise ConfigError("Timeout must be positive")
        if self.loader_id not in SUPPORTED_LOADERS:
            raise ConfigError(f"Unsupported loader {self.loader_id}")
        validate_account_size("State account", self.state_account_size, STAKING_STATE_LAYOUT)
        validate_account_size("Stake account", self.stake_account_size, STAKE_ACCOUNT_LAYOUT)
