from typing import Callable, Sequence, Tuple

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
import solders.system_program as sys

from ledger.client import LedgerClient, unique_signers


async def airdrop(client: LedgerClient, receiver: Pubkey, lamports: int):
    print(f"Airdropping {lamports} lamports to {receiver}...")
    await client.request_airdrop(receiver, lamports)


def create_account_instruction(
        payer: Pubkey, new_account: Pubkey, lamports: int, space: int, owner: Pubkey) -> Instruction:
    return sys.create_account(
        sys.CreateAccountParams(
            from_pubkey=payer,
            to_pubkey=new_account,
            lamports=lamports,
            space=space,
            owner=owner,
        )
    )


async def create_and_initialize(
    client: LedgerClient,
    payer: Keypair,
    owner: Pubkey,
    space: int,
    build_instruction: Callable[[Pubkey], Instruction],
    extra_signers: Sequence[Keypair] = (),
) -> Tuple[Pubkey, Signature]:
    """Creates a rent-exempt account owned by `owner` and initializes it.

    The account is a fresh keypair whose public key is its address.
    `build_instruction` receives that address and returns the instruction
    that initializes the account. Both instructions go in one transaction,
    so the account is never left created but uninitialized.
    """
    account = Keypair()
    print(f"Creating account {account.pubkey()} ({space} bytes, owner {owner})")
    lamports = await client.min_rent_exemption(space)
    instructions = [
        create_account_instruction(payer.pubkey(), account.pubkey(), lamports, space, owner),
        build_instruction(account.pubkey()),
    ]
    signers = unique_signers([payer, account, *extra_signers])
    signature = await client.submit_and_confirm(instructions, signers)
    return account.pubkey(), signature
