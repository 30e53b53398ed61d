"""Ledger client: the network connection used by every deployment step."""

import asyncio
from typing import Any, Awaitable, List, Optional, Sequence

import httpx
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solana.utils.cluster import ENDPOINT
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from ledger.errors import (
    ConfirmationError,
    LedgerConnectionError,
    LedgerError,
    RentQueryError,
    SubmissionError,
)

LOCALNET_ENDPOINT: str = "http://127.0.0.1:8899"
"""Endpoint of a local test validator."""

REMOTE_ENDPOINTS = {
    "devnet": ENDPOINT.https.devnet,
    "testnet": ENDPOINT.https.testnet,
    "mainnet-beta": ENDPOINT.https.mainnet_beta,
}
"""Public RPC endpoints by cluster name."""

CLUSTERS = ("localnet",) + tuple(REMOTE_ENDPOINTS)
"""Cluster names accepted by `cluster_endpoint`."""

LAMPORTS_PER_SOL: int = 1_000_000_000
"""Number of lamports per SOL"""

DEFAULT_TIMEOUT: float = 60.0
"""Seconds any single ledger call may take before it is abandoned."""


def cluster_endpoint(cluster: str) -> str:
    if cluster not in CLUSTERS:
        raise LedgerConnectionError(f"Unknown cluster {cluster!r}, expected one of {', '.join(CLUSTERS)}")
    if cluster == "localnet":
        return LOCALNET_ENDPOINT
    return REMOTE_ENDPOINTS[cluster]


def unique_signers(signers: Sequence[Keypair]) -> List[Keypair]:
    """Drops repeated keypairs, keeping the first occurrence of each pubkey."""
    seen = set()
    result = []
    for signer in signers:
        if signer.pubkey() not in seen:
            seen.add(signer.pubkey())
            result.append(signer)
    return result


class LedgerClient:
    """Wraps an `AsyncClient` working at `Confirmed` commitment.

    Library and transport failures are translated into `LedgerError`
    subclasses here; nothing above this class sees solana-py exceptions.
    """

    def __init__(self, async_client: AsyncClient, timeout: float = DEFAULT_TIMEOUT):
        self.async_client = async_client
        self.timeout = timeout

    @classmethod
    async def connect(
        cls, cluster: str, endpoint: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT, attempts: int = 10,
    ) -> "LedgerClient":
        endpoint = endpoint or cluster_endpoint(cluster)
        print(f"Connecting to {cluster} at {endpoint}")
        async_client = AsyncClient(endpoint=endpoint, commitment=Confirmed, timeout=timeout)
        current_attempt = 0
        while not await async_client.is_connected():
            if current_attempt == attempts:
                await async_client.close()
                raise LedgerConnectionError(f"Could not connect to {endpoint}")
            current_attempt += 1
            await asyncio.sleep(1.0)
        return cls(async_client, timeout)

    async def close(self):
        await self.async_client.close()

    async def _call(self, awaitable: Awaitable[Any], what: str, error: type = LedgerError) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError as err:
            raise error(f"{what} timed out after {self.timeout}s") from err
        except (RPCException, httpx.HTTPError) as err:
            raise error(f"{what} failed: {err}") from err

    async def get_balance(self, pubkey: Pubkey) -> float:
        """Returns the balance of `pubkey` in SOL."""
        resp = await self._call(self.async_client.get_balance(pubkey, commitment=Confirmed), f"Balance of {pubkey}")
        return resp.value / LAMPORTS_PER_SOL

    async def get_account_info(self, pubkey: Pubkey):
        resp = await self._call(
            self.async_client.get_account_info(pubkey, commitment=Confirmed), f"Account info of {pubkey}")
        return resp.value

    async def min_rent_exemption(self, size: int) -> int:
        """Queries the rent-exempt minimum for `size` bytes. Never cached."""
        resp = await self._call(
            self.async_client.get_minimum_balance_for_rent_exemption(size),
            f"Rent exemption for {size} bytes",
            RentQueryError,
        )
        return resp.value

    async def request_airdrop(self, pubkey: Pubkey, lamports: int) -> Signature:
        resp = await self._call(
            self.async_client.request_airdrop(pubkey, lamports, commitment=Confirmed),
            f"Airdrop to {pubkey}",
            SubmissionError,
        )
        await self._confirm(self.async_client.confirm_transaction(resp.value, Confirmed), resp.value)
        return resp.value

    async def _confirm(self, awaitable: Awaitable[Any], what: Any) -> Any:
        try:
            return await self._call(awaitable, f"Confirmation of {what}", ConfirmationError)
        except (UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as err:
            raise ConfirmationError(f"Transaction {what} was not confirmed: {err}") from err

    async def submit_and_confirm(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> Signature:
        """Signs `instructions` as one transaction and waits for confirmation.

        The first signer pays the fee. The signer set must match exactly the
        signers the instructions require, or nothing is sent.
        """
        signers = unique_signers(signers)
        if not signers:
            raise SubmissionError("A transaction needs at least one signer")
        resp = await self._call(self.async_client.get_latest_blockhash(Confirmed), "Blockhash query", SubmissionError)
        blockhash = resp.value.blockhash
        message = Message.new_with_blockhash(list(instructions), signers[0].pubkey(), blockhash)
        required = set(message.account_keys[:message.header.num_required_signatures])
        provided = set(signer.pubkey() for signer in signers)
        if required != provided:
            missing = ', '.join(str(key) for key in required - provided)
            extra = ', '.join(str(key) for key in provided - required)
            raise SubmissionError(f"Signer mismatch, missing [{missing}], unexpected [{extra}]")
        txn = Transaction(signers, message, blockhash)
        opts = TxOpts(
            skip_confirmation=False,
            preflight_commitment=Confirmed,
            last_valid_block_height=resp.value.last_valid_block_height,
        )
        # send_raw_transaction confirms before returning when skip_confirmation is False
        send = self.async_client.send_raw_transaction(bytes(txn), opts=opts)
        try:
            resp = await asyncio.wait_for(send, self.timeout)
        except asyncio.TimeoutError as err:
            raise ConfirmationError(
                f"Transaction {txn.signatures[0]} not confirmed after {self.timeout}s") from err
        except (UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as err:
            raise ConfirmationError(f"Transaction {txn.signatures[0]} was not confirmed: {err}") from err
        except (RPCException, httpx.HTTPError) as err:
            raise SubmissionError(f"Transaction {txn.signatures[0]} rejected: {err}") from err
        return resp.value
