"""Program Loader Constants."""

from typing import Tuple

from solders.pubkey import Pubkey

BPF_LOADER_UPGRADEABLE_PROGRAM_ID = Pubkey.from_string("BPFLoaderUpgradeab1e11111111111111111111111")
"""Public key that identifies the upgradeable BPF loader."""

BPF_LOADER_PROGRAM_ID = Pubkey.from_string("BPFLoader2111111111111111111111111111111111")
"""Public key that identifies the non-upgradeable BPF loader."""

WRITE_CHUNK_SIZE: int = 900
"""Bytecode bytes carried by one Write instruction, sized to fit a single transaction."""

UPGRADEABLE_BUFFER_METADATA_SIZE: int = 37
"""Bytes before the bytecode in an upgradeable loader buffer: state tag and optional authority."""

UPGRADEABLE_PROGRAM_SIZE: int = 36
"""Size of an upgradeable program account: state tag and program data address."""

UPGRADEABLE_PROGRAM_DATA_METADATA_SIZE: int = 45
"""Bytes before the bytecode in program data: state tag, deploy slot and optional authority."""

SUPPORTED_LOADERS = (BPF_LOADER_UPGRADEABLE_PROGRAM_ID, BPF_LOADER_PROGRAM_ID)
"""Loaders `deploy_program` knows how to drive."""


def find_program_data_address(program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Generates the address holding an upgradeable program's bytecode"""
    return Pubkey.find_program_address(
        [bytes(program_id)],
        BPF_LOADER_UPGRADEABLE_PROGRAM_ID,
    )
