# rebalancer/ledger.py
import asyncio
import logging
from functools import wraps
from typing import Any, Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed, Finalized
from solana.rpc.core import RPCException
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from .exceptions import LedgerError, LedgerUnavailable
from .models import BlockhashLease, SignatureStatus, TransactionRecord

# Preflight is skipped: the transaction comes fully built from the swap API.
SEND_OPTIONS = TxOpts(skip_preflight=True, skip_confirmation=True)


def _rpc_call(method):
    """Maps solana-py / transport exceptions onto the ledger error taxonomy."""
    @wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except LedgerError:
            raise
        except (SolanaRpcException, OSError, asyncio.TimeoutError) as e:
            raise LedgerUnavailable(f"{method.__name__}: {e}") from e
        except RPCException as e:
            raise LedgerError(f"{method.__name__}: {e}") from e
    return wrapper


def _value(resp: Any, method: str) -> Any:
    # Typed responses carry `.value`; RPC error objects do not.
    if not hasattr(resp, "value"):
        raise LedgerError(f"{method}: unexpected RPC response {resp}")
    return resp.value


def _confirmation_label(status: Optional[TransactionConfirmationStatus]) -> Optional[str]:
    if status is None:
        return None
    if status == TransactionConfirmationStatus.Finalized:
        return "finalized"
    if status == TransactionConfirmationStatus.Confirmed:
        return "confirmed"
    return "processed"


class SolanaLedger:
    """
    Thin typed facade over the Solana JSON-RPC client.
    Everything above this class deals in plain str / int / dataclasses,
    so the confirmation state machine can run against an in-memory fake.
    """
    def __init__(self, rpc_url: str, logger: logging.Logger,
                 commitment: Commitment = Confirmed, timeout: float = 10):
        self.rpc_url = rpc_url
        self.logger = logger
        self.client = AsyncClient(rpc_url, commitment=commitment, timeout=timeout)

    async def initialize(self) -> bool:
        """
        Connectivity diagnostic: the node must answer a blockhash request.
        Returns False instead of raising so startup can report and exit.
        """
        self.logger.info(f"📡 TESTING RPC CONNECTION ({self.rpc_url})...")
        try:
            lease = await self.get_latest_blockhash()
        except LedgerError as e:
            self.logger.critical(f"   ❌ RPC UNREACHABLE: {e}")
            return False
        self.logger.info(f"   ✅ RPC OK | blockhash: {lease.blockhash} | valid until: {lease.last_valid_block_height}")
        return True

    @_rpc_call
    async def get_balance(self, owner: str) -> int:
        """Native SOL balance in lamports."""
        resp = await self.client.get_balance(Pubkey.from_string(owner))
        return int(_value(resp, "getBalance"))

    @_rpc_call
    async def get_token_balance(self, owner: str, mint: str) -> int:
        """SPL balance in minor units, summed over every account of `mint`."""
        resp = await self.client.get_token_accounts_by_owner_json_parsed(
            Pubkey.from_string(owner),
            TokenAccountOpts(mint=Pubkey.from_string(mint)),
        )
        total = 0
        for account in _value(resp, "getTokenAccountsByOwner"):
            info = account.account.data.parsed["info"]
            total += int(info["tokenAmount"]["amount"])
        return total

    @_rpc_call
    async def get_latest_blockhash(self) -> BlockhashLease:
        resp = await self.client.get_latest_blockhash(commitment=Finalized)
        value = _value(resp, "getLatestBlockhash")
        return BlockhashLease(str(value.blockhash), int(value.last_valid_block_height))

    @_rpc_call
    async def get_block_height(self) -> int:
        resp = await self.client.get_block_height(commitment=Finalized)
        return int(_value(resp, "getBlockHeight"))

    @_rpc_call
    async def send_raw_transaction(self, serialized: bytes) -> str:
        resp = await self.client.send_raw_transaction(serialized, opts=SEND_OPTIONS)
        return str(_value(resp, "sendTransaction"))

    @_rpc_call
    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        resp = await self.client.get_signature_statuses(
            [Signature.from_string(signature)], search_transaction_history=False
        )
        statuses = _value(resp, "getSignatureStatuses")
        status = statuses[0] if statuses else None
        if status is None:
            return None
        return SignatureStatus(_confirmation_label(status.confirmation_status), status.err)

    @_rpc_call
    async def get_transaction(self, signature: str) -> Optional[TransactionRecord]:
        resp = await self.client.get_transaction(
            Signature.from_string(signature),
            encoding="json",
            commitment=Finalized,
            max_supported_transaction_version=0,
        )
        tx = _value(resp, "getTransaction")
        if tx is None:
            return None
        meta = tx.transaction.meta
        return TransactionRecord(
            signature=signature,
            slot=tx.slot,
            err=meta.err if meta else None,
            fee=meta.fee if meta else None,
        )

    async def shutdown(self):
        """
        Gracefully closes the RPC session.
        """
        await self.client.close()
