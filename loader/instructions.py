"""Program Loader Instructions.

Both loaders take a bincode enum: a little-endian u32 tag followed by the
variant's fields. The tags differ between the two loaders.
"""

from enum import IntEnum
from typing import NamedTuple

from construct import GreedyBytes, Int32ul, Int64ul, Pass, Prefixed, Struct, Switch  # type: ignore

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.sysvar import CLOCK, RENT
import solders.system_program as sys


class WriteParams(NamedTuple):
    """Write program data params, non-upgradeable loader."""

    program_id: Pubkey
    """Loader program id."""
    account: Pubkey
    """`[ws]` Account to write to."""
    offset: int
    """Offset at which to write the given bytes."""
    data: bytes
    """Serialized program data."""


class FinalizeParams(NamedTuple):
    """Finalize program params, non-upgradeable loader."""

    program_id: Pubkey
    """Loader program id."""
    account: Pubkey
    """`[ws]` Account holding the written program, marked executable."""


class InitializeBufferParams(NamedTuple):
    """Initialize buffer params, upgradeable loader."""

    program_id: Pubkey
    """Loader program id."""
    buffer: Pubkey
    """`[w]` Uninitialized buffer account."""
    authority: Pubkey
    """`[]` Authority allowed to write to the buffer."""


class WriteBufferParams(NamedTuple):
    """Write to buffer params, upgradeable loader."""

    program_id: Pubkey
    """Loader program id."""
    buffer: Pubkey
    """`[w]` Buffer account to write to."""
    authority: Pubkey
    """`[s]` Buffer authority."""
    offset: int
    """Offset into the bytecode, not counting the buffer metadata."""
    data: bytes
    """Serialized program data."""


class DeployWithMaxDataLenParams(NamedTuple):
    """Deploy program params, upgradeable loader."""

    program_id: Pubkey
    """Loader program id."""
    payer: Pubkey
    """`[ws]` Pays for the program data account."""
    program_data: Pubkey
    """`[w]` Program data account, derived from the program address."""
    program: Pubkey
    """`[w]` Program account, created and owned by the loader beforehand."""
    buffer: Pubkey
    """`[w]` Buffer holding the bytecode, closed by the deploy."""
    authority: Pubkey
    """`[s]` Buffer authority, becomes the upgrade authority."""
    max_data_len: int
    """Largest bytecode the program may ever hold."""


class InstructionType(IntEnum):
    """Loader Instruction Types."""

    WRITE = 0
    FINALIZE = 1


class UpgradeableInstructionType(IntEnum):
    """Upgradeable Loader Instruction Types."""

    INITIALIZE_BUFFER = 0
    WRITE = 1
    DEPLOY_WITH_MAX_DATA_LEN = 2


WRITE_LAYOUT = Struct(
    "offset" / Int32ul,
    "bytes" / Prefixed(Int64ul, GreedyBytes),
)

DEPLOY_WITH_MAX_DATA_LEN_LAYOUT = Struct(
    "max_data_len" / Int64ul,
)

INSTRUCTIONS_LAYOUT = Struct(
    "instruction_type" / Int32ul,
    "args"
    / Switch(
        lambda this: this.instruction_type,
        {
            InstructionType.WRITE: WRITE_LAYOUT,
            InstructionType.FINALIZE: Pass,
        },
    ),
)

UPGRADEABLE_INSTRUCTIONS_LAYOUT = Struct(
    "instruction_type" / Int32ul,
    "args"
    / Switch(
        lambda this: this.instruction_type,
        {
            UpgradeableInstructionType.INITIALIZE_BUFFER: Pass,
            UpgradeableInstructionType.WRITE: WRITE_LAYOUT,
            UpgradeableInstructionType.DEPLOY_WITH_MAX_DATA_LEN: DEPLOY_WITH_MAX_DATA_LEN_LAYOUT,
        },
    ),
)


def write(params: WriteParams) -> Instruction:
    """Creates an instruction writing a chunk of program bytecode."""
    data = INSTRUCTIONS_LAYOUT.build(
        dict(
            instruction_type=InstructionType.WRITE,
            args=dict(
                offset=params.offset,
                bytes=params.data,
            ),
        )
    )
    return Instruction(
        program_id=params.program_id,
        accounts=[
            AccountMeta(pubkey=params.account, is_signer=True, is_writable=True),
        ],
        data=data,
    )


def finalize(params: FinalizeParams) -> Instruction:
    """Creates an instruction marking the written program executable."""
    data = INSTRUCTIONS_LAYOUT.build(
        dict(
            instruction_type=InstructionType.FINALIZE,
            args=None,
        )
    )
    return Instruction(
        program_id=params.program_id,
        accounts=[
            AccountMeta(pubkey=params.account, is_signer=True, is_writable=True),
            AccountMeta(pubkey=RENT, is_signer=False, is_writable=False),
        ],
        data=data,
    )


def initialize_buffer(params: InitializeBufferParams) -> Instruction:
    """Creates an instruction preparing a buffer for bytecode writes."""
    data = UPGRADEABLE_INSTRUCTIONS_LAYOUT.build(
        dict(
            instruction_type=UpgradeableInstructionType.INITIALIZE_BUFFER,
            args=None,
        )
    )
    return Instruction(
        program_id=params.program_id,
        accounts=[
            AccountMeta(pubkey=params.buffer, is_signer=False, is_writable=True),
            AccountMeta(pubkey=params.authority, is_signer=False, is_writable=False),
        ],
        data=data,
    )


def write_buffer(params: WriteBufferParams) -> Instruction:
    """Creates an instruction writing a chunk of bytecode into a buffer."""
    data = UPGRADEABLE_INSTRUCTIONS_LAYOUT.build(
        dict(
            instruction_type=UpgradeableInstructionType.WRITE,
            args=dict(
                offset=params.offset,
                bytes=params.data,
            ),
        )
    )
    return Instruction(
        program_id=params.program_id,
        accounts=[
            AccountMeta(pubkey=params.buffer, is_signer=False, is_writable=True),
            AccountMeta(pubkey=params.authority, is_signer=True, is_writable=False),
        ],
        data=data,
    )


def deploy_with_max_data_len(params: DeployWithMaxDataLenParams) -> Instruction:
    """Creates an instruction deploying the buffer's bytecode as an executable program."""
    data = UPGRADEABLE_INSTRUCTIONS_LAYOUT.build(
        dict(
            instruction_type=UpgradeableInstructionType.DEPLOY_WITH_MAX_DATA_LEN,
            args=dict(max_data_len=params.max_data_len),
        )
    )
    return Instruction(
        program_id=params.program_id,
        accounts=[
            AccountMeta(pubkey=params.payer, is_signer=True, is_writable=True),
            AccountMeta(pubkey=params.program_data, is_signer=False, is_writable=True),
            AccountMeta(pubkey=params.program, is_signer=False, is_writable=True),
            AccountMeta(pubkey=params.buffer, is_signer=False, is_writable=True),
            AccountMeta(pubkey=RENT, is_signer=False, is_writable=False),
            AccountMeta(pubkey=CLOCK, is_signer=False, is_writable=False),
            AccountMeta(pubkey=sys.ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=params.authority, is_signer=True, is_writable=False),
        ],
        data=data,
    )
