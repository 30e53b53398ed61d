"""Staking Program Instructions."""

from enum import IntEnum
from typing import Any, Dict, NamedTuple, Optional

from construct import ConstructError, Int8ul, Int64ul, Pass, Struct, Switch  # type: ignore

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from ledger.errors import DecodeError, EncodingError
from staking.constants import U64_MAX


class InitializeParams(NamedTuple):
    """Initialize staking transaction params."""

    program_id: Pubkey
    """Staking program id."""
    state: Pubkey
    """`[w]` Uninitialized global state account."""
    mint: Pubkey
    """`[]` Token mint staked and rewarded by the program."""
    payer: Pubkey
    """`[s]` Deployer, recorded as the staking authority."""

    # Params
    staking_period: int
    """Seconds a stake stays locked."""
    reward_rate: int
    """Reward rate in parts per thousand."""


class CreateStakeAccountParams(NamedTuple):
    """Create stake account transaction params."""

    program_id: Pubkey
    """Staking program id."""
    stake: Pubkey
    """`[w]` Uninitialized stake account."""
    state: Pubkey
    """`[]` Global state account."""
    user: Pubkey
    """`[s]` User owning the stake."""


class InstructionType(IntEnum):
    """Staking Instruction Types."""

    INITIALIZE = 0
    CREATE_STAKE_ACCOUNT = 1


class InstructionData(NamedTuple):
    """Decoded instruction payload."""
    instruction_type: InstructionType
    args: Optional[Dict[str, int]]


INITIALIZE_LAYOUT = Struct(
    "staking_period" / Int64ul,
    "reward_rate" / Int64ul,
)

ARGS_LAYOUTS = {
    InstructionType.INITIALIZE: INITIALIZE_LAYOUT,
    InstructionType.CREATE_STAKE_ACCOUNT: Pass,
}

INSTRUCTIONS_LAYOUT = Struct(
    "instruction_type" / Int8ul,
    "args"
    / Switch(
        lambda this: this.instruction_type,
        ARGS_LAYOUTS,
    ),
)


def _instruction_type(value: Any, error: type) -> InstructionType:
    try:
        return InstructionType(value)
    except ValueError as err:
        raise error(f"Unknown staking instruction {value!r}") from err


def encoded_size(instruction_type: InstructionType) -> int:
    """Size in bytes of an encoded instruction of the given type."""
    return 1 + ARGS_LAYOUTS[instruction_type].sizeof()


def encode_data(instruction_type: InstructionType, args: Optional[Dict[str, int]] = None) -> bytes:
    """Encodes an instruction as its opcode byte followed by little-endian fields.

    Field values are checked before encoding; nothing out of range is ever built.
    """
    instruction_type = _instruction_type(instruction_type, EncodingError)
    layout = ARGS_LAYOUTS[instruction_type]
    if layout is Pass:
        if args:
            raise EncodingError(f"{instruction_type.name} takes no arguments, got {sorted(args)}")
        args = None
    else:
        args = dict(args or {})
        expected = [subcon.name for subcon in layout.subcons]
        if sorted(args) != sorted(expected):
            raise EncodingError(f"{instruction_type.name} expects fields {expected}, got {sorted(args)}")
        for name, value in args.items():
            if isinstance(value, bool) or not isinstance(value, int):
                raise EncodingError(f"{name} must be an integer, got {value!r}")
            if not 0 <= value <= U64_MAX:
                raise EncodingError(f"{name} must fit in an unsigned 64-bit integer, got {value}")
    try:
        return INSTRUCTIONS_LAYOUT.build(dict(instruction_type=instruction_type, args=args))
    except ConstructError as err:
        raise EncodingError(f"Could not encode {instruction_type.name}: {err}") from err


def decode_data(data: bytes) -> InstructionData:
    if not data:
        raise DecodeError("Empty instruction data")
    instruction_type = _instruction_type(data[0], DecodeError)
    expected = encoded_size(instruction_type)
    if len(data) != expected:
        raise DecodeError(f"{instruction_type.name} is {expected} bytes, got {len(data)}")
    try:
        parsed = INSTRUCTIONS_LAYOUT.parse(data)
    except ConstructError as err:
        raise DecodeError(f"Could not decode {instruction_type.name}: {err}") from err
    args = None
    if parsed['args'] is not None:
        args = {key: value for key, value in parsed['args'].items() if not key.startswith('_')}
    return InstructionData(instruction_type=instruction_type, args=args)


def initialize(params: InitializeParams) -> Instruction:
    """Creates an instruction to initialize the global staking state."""
    data = encode_data(
        InstructionType.INITIALIZE,
        dict(
            staking_period=params.staking_period,
            reward_rate=params.reward_rate,
        ),
    )
    return Instruction(
        program_id=params.program_id,
        accounts=[
            AccountMeta(pubkey=params.state, is_signer=False, is_writable=True),
            AccountMeta(pubkey=params.mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=params.payer, is_signer=True, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        data=data,
    )


def create_stake_account(params: CreateStakeAccountParams) -> Instruction:
    """Creates an instruction to register a user's stake account."""
    data = encode_data(InstructionType.CREATE_STAKE_ACCOUNT)
    return Instruction(
        program_id=params.program_id,
        accounts=[
            AccountMeta(pubkey=params.stake, is_signer=False, is_writable=True),
            AccountMeta(pubkey=params.state, is_signer=False, is_writable=False),
            AccountMeta(pubkey=params.user, is_signer=True, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        data=data,
    )
