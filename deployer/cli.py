import argparse
import asyncio
import sys
from typing import List, Optional, Tuple

from solders.pubkey import Pubkey

from deployer.config import DEFAULT_STEPS, STEP_NAMES, DeployConfig, Step
from deployer.orchestrator import Deployment
from ledger.client import CLUSTERS, DEFAULT_TIMEOUT
from ledger.errors import DeployError
from ledger.keypair import keypair_from_file, load_keypair
from loader.constants import BPF_LOADER_PROGRAM_ID, BPF_LOADER_UPGRADEABLE_PROGRAM_ID
from staking.constants import DEFAULT_REWARD_RATE, DEFAULT_STAKING_PERIOD, STAKE_ACCOUNT_LEN, STATE_ACCOUNT_LEN

LOADERS = {
    "upgradeable": BPF_LOADER_UPGRADEABLE_PROGRAM_ID,
    "final": BPF_LOADER_PROGRAM_ID,
}


def pubkey_arg(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as err:
        raise argparse.ArgumentTypeError(f"invalid public key {value!r}") from err


def steps_arg(value: str) -> Tuple[Step, ...]:
    names = [name.strip() for name in value.split(',') if name.strip()]
    unknown = [name for name in names if name not in STEP_NAMES]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"unknown steps {', '.join(unknown)}, expected {', '.join(STEP_NAMES)}")
    return tuple(sorted(set(STEP_NAMES[name] for name in names)))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Deploy the staking program and initialize its state and stake accounts.')
    parser.add_argument('program', metavar='PROGRAM_PATH', type=str, nargs='?',
                        help='Compiled program bytecode, e.g. target/deploy/staking.so')
    parser.add_argument('--cluster', choices=CLUSTERS, default='localnet',
                        help='Cluster to deploy to, localnet uses http://127.0.0.1:8899')
    parser.add_argument('--endpoint', metavar='ENDPOINT_URL', type=str,
                        help='RPC endpoint overriding the cluster default')
    parser.add_argument('--keypair', metavar='KEYPAIR', type=str, default='deployer-keypair.json',
                        help='Payer keypair file, created if missing')
    parser.add_argument('--steps', metavar='STEPS', type=steps_arg, default=DEFAULT_STEPS,
                        help=f'Comma separated steps to run, from {",".join(STEP_NAMES)}')
    parser.add_argument('--no-airdrop', dest='airdrop', action='store_false',
                        help='Never request faucet funds, required on mainnet-beta')
    parser.add_argument('--min-balance', metavar='SOL', type=float, default=2.0,
                        help='Balance the payer needs before deploying')
    parser.add_argument('--airdrop-amount', metavar='SOL', type=float, default=2.0,
                        help='SOL requested from the faucet when the balance is low')
    parser.add_argument('--staking-period', metavar='SECONDS', type=int, default=DEFAULT_STAKING_PERIOD)
    parser.add_argument('--reward-rate', metavar='RATE', type=int, default=DEFAULT_REWARD_RATE,
                        help='Reward rate in parts per thousand, e.g. 500')
    parser.add_argument('--mint', metavar='MINT_ADDRESS', type=pubkey_arg,
                        help='Token mint for the staking program')
    parser.add_argument('--user', metavar='USER_KEYPAIR', dest='users', action='append', default=[],
                        help='Keypair file of a user to create a stake account for, may be repeated')
    parser.add_argument('--program-id', metavar='PROGRAM_ID', type=pubkey_arg,
                        help='Already deployed program, for runs without the deploy step')
    parser.add_argument('--state-account', metavar='STATE_ACCOUNT', type=pubkey_arg,
                        help='Already initialized state account, for runs without the initialize step')
    parser.add_argument('--loader', choices=LOADERS, default='upgradeable',
                        help='Loader owning the program, final programs cannot be upgraded')
    parser.add_argument('--state-account-size', metavar='BYTES', type=int, default=STATE_ACCOUNT_LEN)
    parser.add_argument('--stake-account-size', metavar='BYTES', type=int, default=STAKE_ACCOUNT_LEN)
    parser.add_argument('--timeout', metavar='SECONDS', type=float, default=DEFAULT_TIMEOUT,
                        help='Limit on any single network call')
    parser.add_argument('--manifest', metavar='MANIFEST', type=str,
                        help='File recording created accounts, lets an interrupted run resume')
    return parser


def config_from_args(args: argparse.Namespace) -> DeployConfig:
    return DeployConfig(
        cluster=args.cluster,
        endpoint=args.endpoint,
        keypair_path=args.keypair,
        program_path=args.program,
        steps=args.steps,
        airdrop=args.airdrop,
        min_balance_sol=args.min_balance,
        airdrop_sol=args.airdrop_amount,
        staking_period=args.staking_period,
        reward_rate=args.reward_rate,
        mint=args.mint,
        users=tuple(keypair_from_file(path) for path in args.users),
        program_id=args.program_id,
        state_account=args.state_account,
        state_account_size=args.state_account_size,
        stake_account_size=args.stake_account_size,
        loader_id=LOADERS[args.loader],
        timeout=args.timeout,
        manifest_path=args.manifest,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
        config.validate()
        payer = load_keypair(config.keypair_path)
        print(f"Deployer public key: {payer.pubkey()}")
        result = asyncio.run(Deployment(config, payer).run())
    except DeployError as err:
        print(f"Deployment failed: {err}", file=sys.stderr)
        return 1
    if result.program_id is not None:
        print(f"Program id: {result.program_id}")
    if result.state_account is not None:
        print(f"State account: {result.state_account}")
    for user, stake_account in result.stake_accounts.items():
        print(f"Stake account for {user}: {stake_account}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
