from typing import Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from ledger.client import LedgerClient
from staking.constants import STAKE_ACCOUNT_LEN, STATE_ACCOUNT_LEN
import staking.instructions as sk
from system.actions import create_and_initialize


async def initialize_staking(
    client: LedgerClient, payer: Keypair, program_id: Pubkey, mint: Pubkey,
    staking_period: int, reward_rate: int, space: int = STATE_ACCOUNT_LEN,
) -> Tuple[Pubkey, Signature]:
    # fails with EncodingError here, before anything reaches the network
    sk.encode_data(
        sk.InstructionType.INITIALIZE,
        dict(staking_period=staking_period, reward_rate=reward_rate),
    )
    print(f"Initializing staking program {program_id}: period {staking_period}s, reward rate {reward_rate}")
    return await create_and_initialize(
        client, payer, program_id, space,
        lambda state: sk.initialize(
            sk.InitializeParams(
                program_id=program_id,
                state=state,
                mint=mint,
                payer=payer.pubkey(),
                staking_period=staking_period,
                reward_rate=reward_rate,
            )
        ),
    )


async def create_stake_account(
    client: LedgerClient, payer: Keypair, program_id: Pubkey, state_account: Pubkey,
    user: Keypair, space: int = STAKE_ACCOUNT_LEN,
) -> Tuple[Pubkey, Signature]:
    print(f"Creating stake account for {user.pubkey()}")
    extra_signers = [user] if user.pubkey() != payer.pubkey() else []
    return await create_and_initialize(
        client, payer, program_id, space,
        lambda stake: sk.create_stake_account(
            sk.CreateStakeAccountParams(
                program_id=program_id,
                stake=stake,
                state=state_account,
                user=user.pubkey(),
            )
        ),
        extra_signers,
    )
