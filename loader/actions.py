from typing import NamedTuple, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ledger.client import LedgerClient
from ledger.errors import ConfigError, FileError, LedgerError
from loader.constants import (
    BPF_LOADER_PROGRAM_ID,
    BPF_LOADER_UPGRADEABLE_PROGRAM_ID,
    UPGRADEABLE_BUFFER_METADATA_SIZE,
    UPGRADEABLE_PROGRAM_SIZE,
    WRITE_CHUNK_SIZE,
    find_program_data_address,
)
import loader.instructions as ld
from system.actions import create_account_instruction


class ProgramRecord(NamedTuple):
    """A deployed program."""
    program_id: Pubkey
    byte_length: int
    program_data: Optional[Pubkey] = None
    """Account holding the bytecode, for upgradeable programs."""


def read_program(path: str) -> bytes:
    try:
        with open(path, 'rb') as program_file:
            bytecode = program_file.read()
    except OSError as err:
        raise FileError(f"Could not read program bytecode from {path}: {err}") from err
    if not bytecode:
        raise FileError(f"Program bytecode file {path} is empty")
    return bytecode


async def deploy_program(
    client: LedgerClient,
    payer: Keypair,
    bytecode: bytes,
    loader_id: Pubkey = BPF_LOADER_UPGRADEABLE_PROGRAM_ID,
    chunk_size: int = WRITE_CHUNK_SIZE,
) -> ProgramRecord:
    """Uploads `bytecode` as a new executable program owned by `loader_id`.

    The payer signs and pays for every transaction. Once the last one is
    confirmed the program account is fetched back and must be executable and
    owned by the loader.
    """
    if loader_id == BPF_LOADER_UPGRADEABLE_PROGRAM_ID:
        record = await _deploy_upgradeable(client, payer, bytecode, chunk_size)
    elif loader_id == BPF_LOADER_PROGRAM_ID:
        record = await _deploy_final(client, payer, bytecode, chunk_size)
    else:
        raise ConfigError(f"Unsupported loader {loader_id}")
    account = await client.get_account_info(record.program_id)
    if account is None or not account.executable or account.owner != loader_id:
        raise LedgerError(f"Program {record.program_id} is not an executable account of {loader_id} after deployment")
    return record


async def _deploy_final(client: LedgerClient, payer: Keypair, bytecode: bytes, chunk_size: int) -> ProgramRecord:
    """The program account is created with exactly `len(bytecode)` bytes,
    filled with `Write` instructions and marked executable with `Finalize`.
    Every transaction is also signed by the program keypair."""
    program = Keypair()
    space = len(bytecode)
    print(f"Deploying program {program.pubkey()} ({space} bytes)")
    rent = await client.min_rent_exemption(space)
    await client.submit_and_confirm(
        [create_account_instruction(payer.pubkey(), program.pubkey(), rent, space, BPF_LOADER_PROGRAM_ID)],
        [payer, program],
    )
    for offset in range(0, space, chunk_size):
        await client.submit_and_confirm(
            [
                ld.write(
                    ld.WriteParams(
                        program_id=BPF_LOADER_PROGRAM_ID,
                        account=program.pubkey(),
                        offset=offset,
                        data=bytecode[offset:offset + chunk_size],
                    )
                )
            ],
            [payer, program],
        )
    await client.submit_and_confirm(
        [ld.finalize(ld.FinalizeParams(program_id=BPF_LOADER_PROGRAM_ID, account=program.pubkey()))],
        [payer, program],
    )
    return ProgramRecord(program_id=program.pubkey(), byte_length=space)


async def _deploy_upgradeable(client: LedgerClient, payer: Keypair, bytecode: bytes, chunk_size: int) -> ProgramRecord:
    """The bytecode is written into a buffer whose authority is the payer,
    then `DeployWithMaxDataLen` moves it into the program data account,
    sized for exactly `len(bytecode)` bytes, and closes the buffer."""
    buffer = Keypair()
    program = Keypair()
    space = len(bytecode)
    print(f"Deploying program {program.pubkey()} ({space} bytes) through buffer {buffer.pubkey()}")
    buffer_space = UPGRADEABLE_BUFFER_METADATA_SIZE + space
    buffer_rent = await client.min_rent_exemption(buffer_space)
    await client.submit_and_confirm(
        [
            create_account_instruction(
                payer.pubkey(), buffer.pubkey(), buffer_rent, buffer_space, BPF_LOADER_UPGRADEABLE_PROGRAM_ID),
            ld.initialize_buffer(
                ld.InitializeBufferParams(
                    program_id=BPF_LOADER_UPGRADEABLE_PROGRAM_ID,
                    buffer=buffer.pubkey(),
                    authority=payer.pubkey(),
                )
            ),
        ],
        [payer, buffer],
    )
    for offset in range(0, space, chunk_size):
        await client.submit_and_confirm(
            [
                ld.write_buffer(
                    ld.WriteBufferParams(
                        program_id=BPF_LOADER_UPGRADEABLE_PROGRAM_ID,
                        buffer=buffer.pubkey(),
                        authority=payer.pubkey(),
                        offset=offset,
                        data=bytecode[offset:offset + chunk_size],
                    )
                )
            ],
            [payer],
        )
    (program_data, _) = find_program_data_address(program.pubkey())
    program_rent = await client.min_rent_exemption(UPGRADEABLE_PROGRAM_SIZE)
    await client.submit_and_confirm(
        [
            create_account_instruction(
                payer.pubkey(), program.pubkey(), program_rent, UPGRADEABLE_PROGRAM_SIZE,
                BPF_LOADER_UPGRADEABLE_PROGRAM_ID),
            ld.deploy_with_max_data_len(
                ld.DeployWithMaxDataLenParams(
                    program_id=BPF_LOADER_UPGRADEABLE_PROGRAM_ID,
                    payer=payer.pubkey(),
                    program_data=program_data,
                    program=program.pubkey(),
                    buffer=buffer.pubkey(),
                    authority=payer.pubkey(),
                    max_data_len=space,
                )
            ),
        ],
        [payer, program],
    )
    return ProgramRecord(program_id=program.pubkey(), byte_length=space, program_data=program_data)
