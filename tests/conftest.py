from typing import Dict, List, Optional, Sequence, Tuple

from construct import ConstructError  # type: ignore
import pytest
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
import solders.system_program as sys

from ledger.client import LAMPORTS_PER_SOL, unique_signers
from ledger.errors import SubmissionError
from loader.constants import (
    BPF_LOADER_PROGRAM_ID,
    BPF_LOADER_UPGRADEABLE_PROGRAM_ID,
    UPGRADEABLE_BUFFER_METADATA_SIZE,
    UPGRADEABLE_PROGRAM_DATA_METADATA_SIZE,
    UPGRADEABLE_PROGRAM_SIZE,
    find_program_data_address,
)
from loader.instructions import (
    INSTRUCTIONS_LAYOUT as LOADER_LAYOUT,
    UPGRADEABLE_INSTRUCTIONS_LAYOUT,
    InstructionType as LoaderInstructionType,
    UpgradeableInstructionType,
)

PAYER_LAMPORTS: int = 10 * LAMPORTS_PER_SOL
RENT_PER_BYTE_YEAR: int = 3480
ACCOUNT_STORAGE_OVERHEAD: int = 128

# upgradeable loader account states, bincode u32 tags
BUFFER_STATE: bytes = (1).to_bytes(4, "little")
PROGRAM_STATE: bytes = (2).to_bytes(4, "little")
PROGRAM_DATA_STATE: bytes = (3).to_bytes(4, "little")

UPGRADEABLE_ACCOUNT_COUNTS = {
    UpgradeableInstructionType.INITIALIZE_BUFFER: 2,
    UpgradeableInstructionType.WRITE: 2,
    UpgradeableInstructionType.DEPLOY_WITH_MAX_DATA_LEN: 8,
}
LOADER_ACCOUNT_COUNTS = {
    LoaderInstructionType.WRITE: 1,
    LoaderInstructionType.FINALIZE: 2,
}


def rent_exemption(size: int) -> int:
    return (ACCOUNT_STORAGE_OVERHEAD + size) * RENT_PER_BYTE_YEAR * 2


class FakeAccount:
    def __init__(self, lamports: int, space: int, owner: Pubkey):
        self.lamports = lamports
        self.data = bytearray(space)
        self.owner = owner
        self.executable = False

    def copy(self) -> "FakeAccount":
        account = FakeAccount(self.lamports, 0, self.owner)
        account.data = bytearray(self.data)
        account.executable = self.executable
        return account


class FakeLedger:
    """In-memory ledger with the LedgerClient interface.

    Transactions apply all their instructions or none. Creating an account at
    an address already in use fails, as it does on chain. Both loaders are
    simulated, each accepting only its own instruction tags and account
    lists. Domain instructions for deployed programs are accepted without
    being executed.
    """

    def __init__(self, airdrop_lamports: Optional[int] = None):
        self.balances: Dict[Pubkey, int] = {}
        self.accounts: Dict[Pubkey, FakeAccount] = {}
        self.transactions: List[Tuple[List[Instruction], List[Pubkey]]] = []
        self.rent_queries: List[int] = []
        self.airdrops: List[Tuple[Pubkey, int]] = []
        self.airdrop_lamports = airdrop_lamports
        self.failures: Dict[int, Exception] = {}
        self.submissions = 0
        self.closed = False

    def fund(self, pubkey: Pubkey, lamports: int):
        self.balances[pubkey] = self.balances.get(pubkey, 0) + lamports

    def fail_submission(self, number: int, error: Exception):
        """Makes the `number`th submission, counting from 1, raise `error`."""
        self.failures[number] = error

    async def get_balance(self, pubkey: Pubkey) -> float:
        return self.balances.get(pubkey, 0) / LAMPORTS_PER_SOL

    async def get_account_info(self, pubkey: Pubkey):
        return self.accounts.get(pubkey)

    async def min_rent_exemption(self, size: int) -> int:
        self.rent_queries.append(size)
        return rent_exemption(size)

    async def request_airdrop(self, pubkey: Pubkey, lamports: int) -> Signature:
        granted = lamports if self.airdrop_lamports is None else self.airdrop_lamports
        self.airdrops.append((pubkey, lamports))
        self.fund(pubkey, granted)
        return Signature.new_unique()

    async def submit_and_confirm(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> Signature:
        self.submissions += 1
        if self.submissions in self.failures:
            raise self.failures[self.submissions]
        signers = unique_signers(signers)
        required = set([signers[0].pubkey()])
        for instruction in instructions:
            required.update(meta.pubkey for meta in instruction.accounts if meta.is_signer)
        provided = set(signer.pubkey() for signer in signers)
        if required != provided:
            raise SubmissionError(f"Signer mismatch: required {required}, provided {provided}")
        balances = dict(self.balances)
        accounts = {address: account.copy() for address, account in self.accounts.items()}
        for instruction in instructions:
            self._apply(instruction, balances, accounts)
        self.balances = balances
        self.accounts = accounts
        self.transactions.append((list(instructions), [signer.pubkey() for signer in signers]))
        return Signature.new_unique()

    def _apply(self, instruction: Instruction, balances: Dict, accounts: Dict):
        if instruction.program_id == sys.ID:
            params = sys.decode_create_account(instruction)
            if params['to_pubkey'] in accounts:
                raise SubmissionError(f"Account {params['to_pubkey']} already in use")
            if balances.get(params['from_pubkey'], 0) < params['lamports']:
                raise SubmissionError(f"Insufficient funds in {params['from_pubkey']}")
            balances[params['from_pubkey']] -= params['lamports']
            accounts[params['to_pubkey']] = FakeAccount(params['lamports'], params['space'], params['owner'])
            return
        if instruction.program_id == BPF_LOADER_UPGRADEABLE_PROGRAM_ID:
            self._apply_upgradeable(instruction, balances, accounts)
            return
        target = accounts.get(instruction.accounts[0].pubkey)
        if target is None or target.owner != instruction.program_id:
            raise SubmissionError(f"Account {instruction.accounts[0].pubkey} is not owned by {instruction.program_id}")
        if instruction.program_id == BPF_LOADER_PROGRAM_ID:
            parsed = self._parse_loader(LOADER_LAYOUT, LOADER_ACCOUNT_COUNTS, instruction)
            if target.executable:
                raise SubmissionError(f"Program {instruction.accounts[0].pubkey} is already finalized")
            if parsed['instruction_type'] == LoaderInstructionType.WRITE:
                self._write(target, 0, parsed['args'])
            else:
                target.executable = True
            return
        program = accounts.get(instruction.program_id)
        if program is None or not program.executable:
            raise SubmissionError(f"Program {instruction.program_id} is not deployed")

    @staticmethod
    def _parse_loader(layout, account_counts: Dict, instruction: Instruction):
        try:
            parsed = layout.parse(bytes(instruction.data))
        except ConstructError as err:
            raise SubmissionError(f"Invalid instruction data for {instruction.program_id}: {err}") from err
        expected = account_counts.get(parsed['instruction_type'])
        if expected is None or len(instruction.accounts) != expected:
            raise SubmissionError(
                f"Invalid instruction {parsed['instruction_type']} with {len(instruction.accounts)} accounts "
                f"for {instruction.program_id}")
        return parsed

    @staticmethod
    def _write(account: FakeAccount, start: int, args):
        offset, chunk = start + args['offset'], args['bytes']
        if offset + len(chunk) > len(account.data):
            raise SubmissionError("Write past the end of the account")
        account.data[offset:offset + len(chunk)] = chunk

    @staticmethod
    def _loader_account(accounts: Dict, pubkey: Pubkey) -> FakeAccount:
        account = accounts.get(pubkey)
        if account is None or account.owner != BPF_LOADER_UPGRADEABLE_PROGRAM_ID:
            raise SubmissionError(f"Account {pubkey} is not owned by {BPF_LOADER_UPGRADEABLE_PROGRAM_ID}")
        return account

    def _buffer(self, accounts: Dict, pubkey: Pubkey, authority: AccountMeta) -> FakeAccount:
        buffer = self._loader_account(accounts, pubkey)
        if bytes(buffer.data[:4]) != BUFFER_STATE:
            raise SubmissionError(f"Account {pubkey} is not a buffer")
        if bytes(buffer.data[5:UPGRADEABLE_BUFFER_METADATA_SIZE]) != bytes(authority.pubkey) or not authority.is_signer:
            raise SubmissionError(f"Buffer {pubkey} needs the signature of its authority")
        return buffer

    def _apply_upgradeable(self, instruction: Instruction, balances: Dict, accounts: Dict):
        parsed = self._parse_loader(UPGRADEABLE_INSTRUCTIONS_LAYOUT, UPGRADEABLE_ACCOUNT_COUNTS, instruction)
        metas = instruction.accounts
        if parsed['instruction_type'] == UpgradeableInstructionType.INITIALIZE_BUFFER:
            buffer = self._loader_account(accounts, metas[0].pubkey)
            if len(buffer.data) < UPGRADEABLE_BUFFER_METADATA_SIZE or any(buffer.data[:4]):
                raise SubmissionError(f"Account {metas[0].pubkey} is not an uninitialized buffer")
            buffer.data[:4] = BUFFER_STATE
            buffer.data[4] = 1
            buffer.data[5:UPGRADEABLE_BUFFER_METADATA_SIZE] = bytes(metas[1].pubkey)
        elif parsed['instruction_type'] == UpgradeableInstructionType.WRITE:
            buffer = self._buffer(accounts, metas[0].pubkey, metas[1])
            self._write(buffer, UPGRADEABLE_BUFFER_METADATA_SIZE, parsed['args'])
        else:
            payer, program_data, program, buffer_meta, authority = metas[0], metas[1], metas[2], metas[3], metas[7]
            program_account = self._loader_account(accounts, program.pubkey)
            if len(program_account.data) < UPGRADEABLE_PROGRAM_SIZE or any(program_account.data[:4]):
                raise SubmissionError(f"Account {program.pubkey} is not an uninitialized program")
            if program_data.pubkey != find_program_data_address(program.pubkey)[0] or program_data.pubkey in accounts:
                raise SubmissionError(f"Invalid program data account {program_data.pubkey}")
            buffer = self._buffer(accounts, buffer_meta.pubkey, authority)
            bytecode = bytes(buffer.data[UPGRADEABLE_BUFFER_METADATA_SIZE:])
            max_data_len = parsed['args']['max_data_len']
            if len(bytecode) > max_data_len:
                raise SubmissionError("Buffer holds more than max_data_len bytes")
            space = UPGRADEABLE_PROGRAM_DATA_METADATA_SIZE + max_data_len
            lamports = rent_exemption(space)
            if balances.get(payer.pubkey, 0) < lamports:
                raise SubmissionError(f"Insufficient funds in {payer.pubkey}")
            balances[payer.pubkey] -= lamports
            data_account = FakeAccount(lamports, space, BPF_LOADER_UPGRADEABLE_PROGRAM_ID)
            data_account.data[:4] = PROGRAM_DATA_STATE
            data_account.data[12] = 1
            data_account.data[13:UPGRADEABLE_PROGRAM_DATA_METADATA_SIZE] = bytes(authority.pubkey)
            start = UPGRADEABLE_PROGRAM_DATA_METADATA_SIZE
            data_account.data[start:start + len(bytecode)] = bytecode
            accounts[program_data.pubkey] = data_account
            program_account.data[:4] = PROGRAM_STATE
            program_account.data[4:UPGRADEABLE_PROGRAM_SIZE] = bytes(program_data.pubkey)
            program_account.executable = True
            balances[payer.pubkey] = balances.get(payer.pubkey, 0) + buffer.lamports
            del accounts[buffer_meta.pubkey]

    async def close(self):
        self.closed = True


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def payer(ledger) -> Keypair:
    payer = Keypair()
    ledger.fund(payer.pubkey(), PAYER_LAMPORTS)
    return payer


@pytest.fixture
def program_id(ledger) -> Pubkey:
    """A deployed program: an executable account, which the ledger never runs."""
    program_id = Pubkey.new_unique()
    program = FakeAccount(0, 0, Pubkey.new_unique())
    program.executable = True
    ledger.accounts[program_id] = program
    return program_id


@pytest.fixture
def connect(ledger):
    calls = []

    async def connect(cluster, endpoint=None, timeout=None):
        calls.append((cluster, endpoint, timeout))
        return ledger

    connect.calls = calls
    return connect
