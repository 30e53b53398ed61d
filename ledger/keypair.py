"""Keypair files: a JSON array of the 64 secret key bytes."""

import json
import os
import tempfile
from typing import Any

from solders.keypair import Keypair

from ledger.errors import FileError


def write_json_atomic(path: str, obj: Any):
    """Replaces `path` with `obj` as JSON, or leaves it untouched on failure."""
    directory = os.path.dirname(os.path.abspath(path))
    try:
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-', suffix='.json')
        try:
            with os.fdopen(fd, 'w') as tmp:
                json.dump(obj, tmp)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            os.unlink(tmp_path)
            raise
    except OSError as err:
        raise FileError(f"Could not write {path}: {err}") from err


def _read_keypair(path: str) -> Keypair:
    with open(path, 'r') as keyfile:
        data = keyfile.read()
    int_list = json.loads(data)
    if not isinstance(int_list, list):
        raise ValueError(f"{path} does not hold a JSON array")
    return Keypair.from_bytes(bytes(int_list))


def keypair_from_file(path: str) -> Keypair:
    """Loads an existing keypair, failing if the file is missing or corrupt."""
    try:
        return _read_keypair(path)
    except (OSError, ValueError, TypeError) as err:
        raise FileError(f"Could not read keypair from {path}: {err}") from err


def load_keypair(path: str) -> Keypair:
    """Loads the keypair stored at `path`, generating and saving one if needed.

    A missing or unparseable file is treated as a first run: a fresh keypair is
    written to `path` before it is returned, so the same identity comes back on
    every later call.
    """
    try:
        return _read_keypair(path)
    except (OSError, ValueError, TypeError) as err:
        print(f"No usable keypair at {path} ({err}), generating a new one")
    keypair = Keypair()
    print(f"Saving keypair {keypair.pubkey()} to {path}")
    write_json_atomic(path, list(bytes(keypair)))
    return keypair
