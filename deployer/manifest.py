"""Record of the on-chain accounts a deployment has already created."""

import json
import os
from typing import Dict, Optional

from solders.pubkey import Pubkey

from ledger.errors import ConfigError, FileError
from ledger.keypair import write_json_atomic


def _optional_pubkey(value: Optional[str]) -> Optional[Pubkey]:
    if value:
        return Pubkey.from_string(value)
    else:
        return None


class Manifest:
    """Addresses created so far, saved after every confirmed step."""

    def __init__(self, path: str, cluster: str):
        self.path = path
        self.cluster = cluster
        self.program_id: Optional[Pubkey] = None
        self.byte_length: Optional[int] = None
        self.mint: Optional[Pubkey] = None
        self.state_account: Optional[Pubkey] = None
        self.stake_accounts: Dict[Pubkey, Pubkey] = {}

    @classmethod
    def load(cls, path: str, cluster: str) -> "Manifest":
        manifest = cls(path, cluster)
        if not os.path.exists(path):
            return manifest
        try:
            with open(path, 'r') as manifest_file:
                data = json.load(manifest_file)
            recorded_cluster = data['cluster']
            manifest.program_id = _optional_pubkey(data.get('program_id'))
            manifest.byte_length = data.get('byte_length')
            manifest.mint = _optional_pubkey(data.get('mint'))
            manifest.state_account = _optional_pubkey(data.get('state_account'))
            manifest.stake_accounts = {
                Pubkey.from_string(user): Pubkey.from_string(stake)
                for user, stake in data.get('stake_accounts', {}).items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as err:
            raise FileError(f"Could not read deployment manifest {path}: {err}") from err
        if recorded_cluster != cluster:
            raise ConfigError(f"Manifest {path} belongs to {recorded_cluster}, not {cluster}")
        return manifest

    def as_dict(self) -> Dict:
        return {
            'cluster': self.cluster,
            'program_id': str(self.program_id) if self.program_id is not None else None,
            'byte_length': self.byte_length,
            'mint': str(self.mint) if self.mint is not None else None,
            'state_account': str(self.state_account) if self.state_account is not None else None,
            'stake_accounts': {str(user): str(stake) for user, stake in self.stake_accounts.items()},
        }

    def save(self):
        write_json_atomic(self.path, self.as_dict())
