"""Runs the deployment pipeline: connect, fund, deploy, initialize, create stake accounts."""

import asyncio
from enum import IntEnum
from typing import Callable, Dict, List, NamedTuple, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from deployer.config import DeployConfig, Step
from deployer.manifest import Manifest
from ledger.client import LAMPORTS_PER_SOL, LedgerClient, unique_signers
from ledger.errors import ConfigError, InsufficientFundsError
from loader.actions import deploy_program, read_program
from staking.actions import create_stake_account, initialize_staking
from system.actions import airdrop


class DeployState(IntEnum):
    """How far a deployment has progressed."""

    DISCONNECTED = 0
    CONNECTED = 1
    FUNDED = 2
    PROGRAM_DEPLOYED = 3
    STATE_INITIALIZED = 4
    STAKE_ACCOUNT_CREATED = 5


REQUIRED_STATE = {
    Step.CONNECT: DeployState.DISCONNECTED,
    Step.FUND: DeployState.CONNECTED,
    Step.DEPLOY: DeployState.FUNDED,
    Step.INITIALIZE: DeployState.PROGRAM_DEPLOYED,
    Step.CREATE_STAKE_ACCOUNTS: DeployState.STATE_INITIALIZED,
}


class DeployResult(NamedTuple):
    """Addresses produced or reused by a deployment run."""
    program_id: Optional[Pubkey]
    state_account: Optional[Pubkey]
    stake_accounts: Dict[Pubkey, Pubkey]
    signatures: List[Signature]


class Deployment:
    """A single run of the pipeline described by `config`.

    Steps run in order and each requires the state left by the one before.
    A step left out of `config.steps` is passed over only when its result is
    already known, from the config or the manifest. The first error stops
    the run; `state` then tells how far it got and the error propagates
    unchanged.
    """

    def __init__(
        self, config: DeployConfig, payer: Keypair,
        connect: Callable = LedgerClient.connect,
    ):
        self.config = config
        self.payer = payer
        self.connect = connect
        self.state = DeployState.DISCONNECTED
        self.client: Optional[LedgerClient] = None
        self.manifest: Optional[Manifest] = None
        self.program_id = config.program_id
        self.state_account = config.state_account
        self.stake_accounts: Dict[Pubkey, Pubkey] = {}
        self.signatures: List[Signature] = []

    def _require(self, step: Step):
        required = REQUIRED_STATE[step]
        if self.state != required:
            raise ConfigError(f"{step.name} needs state {required.name}, deployment is at {self.state.name}")

    def _advance(self, state: DeployState):
        print(f"Deployment state: {state.name}")
        self.state = state

    def _save_manifest(self):
        if self.manifest:
            self.manifest.save()

    def _load_manifest(self):
        if not self.config.manifest_path:
            return
        self.manifest = Manifest.load(self.config.manifest_path, self.config.cluster)
        for name in ('program_id', 'state_account'):
            configured = getattr(self.config, name)
            recorded = getattr(self.manifest, name)
            if configured is not None and recorded is not None and configured != recorded:
                raise ConfigError(f"Configured {name} {configured} differs from recorded {recorded}")
        if self.program_id is None:
            self.program_id = self.manifest.program_id
        if self.state_account is None:
            self.state_account = self.manifest.state_account
        self.manifest.program_id = self.program_id
        self.manifest.state_account = self.state_account
        self.stake_accounts.update(self.manifest.stake_accounts)

    async def run(self) -> DeployResult:
        self._load_manifest()
        bytecode = None
        if Step.DEPLOY in self.config.steps and self.program_id is None:
            bytecode = read_program(self.config.program_path)
        try:
            for step in Step:
                if step in self.config.steps:
                    await self._run_step(step, bytecode)
                else:
                    self._pass_over(step)
        finally:
            if self.client is not None:
                await self.client.close()
        return DeployResult(
            program_id=self.program_id,
            state_account=self.state_account,
            stake_accounts=dict(self.stake_accounts),
            signatures=list(self.signatures),
        )

    def _pass_over(self, step: Step):
        if step == Step.FUND and self.state == DeployState.CONNECTED:
            self._advance(DeployState.FUNDED)
        elif step == Step.DEPLOY and self.state == DeployState.FUNDED and self.program_id is not None:
            print(f"Using program {self.program_id}")
            self._advance(DeployState.PROGRAM_DEPLOYED)
        elif step == Step.INITIALIZE and self.state == DeployState.PROGRAM_DEPLOYED and self.state_account is not None:
            print(f"Using state account {self.state_account}")
            self._advance(DeployState.STATE_INITIALIZED)

    async def _run_step(self, step: Step, bytecode: Optional[bytes]):
        self._require(step)
        if step == Step.CONNECT:
            self.client = await self.connect(
                self.config.cluster, endpoint=self.config.endpoint, timeout=self.config.timeout)
            self._advance(DeployState.CONNECTED)
        elif step == Step.FUND:
            await self.fund()
            self._advance(DeployState.FUNDED)
        elif step == Step.DEPLOY:
            await self.deploy(bytecode)
            self._advance(DeployState.PROGRAM_DEPLOYED)
        elif step == Step.INITIALIZE:
            await self.initialize()
            self._advance(DeployState.STATE_INITIALIZED)
        elif step == Step.CREATE_STAKE_ACCOUNTS:
            if await self.create_stake_accounts():
                self._advance(DeployState.STAKE_ACCOUNT_CREATED)

    async def fund(self):
        minimum = self.config.min_balance_sol
        balance = await self.client.get_balance(self.payer.pubkey())
        print(f"Current balance: {balance} SOL")
        if balance >= minimum:
            return
        if not self.config.airdrop:
            raise InsufficientFundsError(
                f"Balance of {self.payer.pubkey()} is {balance} SOL, {minimum} SOL needed and airdrops are disabled")
        await airdrop(self.client, self.payer.pubkey(), int(self.config.airdrop_sol * LAMPORTS_PER_SOL))
        balance = await self.client.get_balance(self.payer.pubkey())
        print(f"New balance: {balance} SOL")
        if balance < minimum:
            raise InsufficientFundsError(
                f"Balance of {self.payer.pubkey()} is still {balance} SOL after airdrop, {minimum} SOL needed")

    async def deploy(self, bytecode: Optional[bytes]):
        if self.program_id is not None:
            print(f"Program already deployed at {self.program_id}")
            return
        record = await deploy_program(self.client, self.payer, bytecode, loader_id=self.config.loader_id)
        self.program_id = record.program_id
        print(f"Program deployed at {record.program_id}")
        if self.manifest:
            self.manifest.program_id = record.program_id
            self.manifest.byte_length = record.byte_length
            self._save_manifest()

    async def initialize(self):
        if self.state_account is not None:
            print(f"State account already initialized at {self.state_account}")
            return
        mint = self.config.mint
        if mint is None and self.manifest:
            mint = self.manifest.mint
        if mint is None:
            mint = Keypair().pubkey()
            print(f"No mint given, using placeholder mint {mint}")
        self.state_account, signature = await initialize_staking(
            self.client, self.payer, self.program_id, mint,
            self.config.staking_period, self.config.reward_rate,
            space=self.config.state_account_size,
        )
        self.signatures.append(signature)
        print(f"State account: {self.state_account}")
        print(f"Transaction signature: {signature}")
        if self.manifest:
            self.manifest.mint = mint
            self.manifest.state_account = self.state_account
            self._save_manifest()

    async def create_stake_accounts(self) -> bool:
        """Creates a stake account for each user without one, concurrently.

        Accounts that were created are recorded even when another user's
        creation fails; the first failure is then raised.
        """
        users = [user for user in unique_signers(self.config.users) if user.pubkey() not in self.stake_accounts]
        if not users:
            print("No stake accounts to create")
            return bool(self.stake_accounts)
        results = await asyncio.gather(
            *[
                create_stake_account(
                    self.client, self.payer, self.program_id, self.state_account, user,
                    space=self.config.stake_account_size,
                )
                for user in users
            ],
            return_exceptions=True,
        )
        errors = []
        for user, result in zip(users, results):
            if isinstance(result, BaseException):
                print(f"Stake account for {user.pubkey()} failed: {result}")
                errors.append(result)
                continue
            stake_account, signature = result
            print(f"Stake account for {user.pubkey()}: {stake_account}")
            self.stake_accounts[user.pubkey()] = stake_account
            self.signatures.append(signature)
            if self.manifest:
                self.manifest.stake_accounts[user.pubkey()] = stake_account
        self._save_manifest()
        if errors:
            raise errors[0]
        return True
