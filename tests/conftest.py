"""
Shared fixtures: an in-memory ledger that scripts how a transaction
behaves on-chain, and fast sender timings so confirmation tests run in
well under a second.
"""
import logging
from decimal import Decimal

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from rebalancer.exceptions import LedgerError, LedgerUnavailable
from rebalancer.models import (
    BlockhashLease, SignatureStatus, TokenDescriptor, TokenPair, TransactionRecord,
)
from rebalancer.transaction_sender import SenderSettings

SOL = TokenDescriptor("So11111111111111111111111111111111111111112", "SOL", 9)
MBC = TokenDescriptor("4s41P39cBUsBbVzEuf6TTLsdJGniuLfjKyR4ZEBgNKba", "MBC", 9)
USDC = TokenDescriptor("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "USDC", 6)


class FakeLedger:
    """
    Scripted ledger.

    - finalize_at: status call number from which the signature is finalized
    - err_at / err: status call number from which an on-chain error shows
    - status_errors: {call number: exception} raised by get_signature_status
    - block_height / height_step: chain height, advanced on every read
    - record_from: get_transaction call number from which the record exists
    """
    def __init__(self, finalize_at=None, err_at=None, err=None, status_errors=None,
                 block_height=1_000, height_step=0, record_from=1, record_err=None,
                 fail_first_send=False, fail_resends=False, signature="5xSig"):
        self.finalize_at = finalize_at
        self.err_at = err_at
        self.err = err or {"InstructionError": [2, {"Custom": 6001}]}
        self.status_errors = status_errors or {}
        self.height = block_height
        self.height_step = height_step
        self.record_from = record_from
        self.record_err = record_err
        self.fail_first_send = fail_first_send
        self.fail_resends = fail_resends
        self.signature = signature

        self.sends = 0
        self.status_calls = 0
        self.transaction_calls = 0
        self.finalized = False

    def activity(self):
        return (self.sends, self.status_calls, self.transaction_calls)

    async def send_raw_transaction(self, serialized: bytes) -> str:
        self.sends += 1
        if self.sends == 1 and self.fail_first_send:
            raise LedgerError("sendTransaction: node rejected the transaction")
        if self.sends > 1 and self.fail_resends:
            raise LedgerUnavailable("sendTransaction: connection reset")
        return self.signature

    async def get_signature_status(self, signature: str):
        self.status_calls += 1
        if self.status_calls in self.status_errors:
            raise self.status_errors[self.status_calls]
        if self.err_at is not None and self.status_calls >= self.err_at:
            return SignatureStatus("confirmed", self.err)
        if self.finalize_at is not None and self.status_calls >= self.finalize_at:
            self.finalized = True
            return SignatureStatus("finalized")
        return None

    async def get_block_height(self) -> int:
        self.height += self.height_step
        return self.height

    async def get_transaction(self, signature: str):
        self.transaction_calls += 1
        if self.finalized and self.transaction_calls >= self.record_from:
            return TransactionRecord(signature, slot=321, err=self.record_err, fee=5000)
        return None

    async def get_latest_blockhash(self) -> BlockhashLease:
        return BlockhashLease("GHtXQBsoZHVnNFa9YevAzFr17DJjgHXk3ycTKD5xD3Zi", self.height + 300)


@pytest.fixture
def logger():
    return logging.getLogger("rebalancer-tests")


@pytest.fixture
def fast_settings():
    return SenderSettings(
        max_duration=0.5,
        resend_interval=0.02,
        poll_interval=0.05,
        watch_interval=0.01,
        lease_safety_margin=150,
        fetch_attempts=2,
        fetch_interval=0.01,
    )


@pytest.fixture
def make_ledger():
    return FakeLedger


@pytest.fixture
def lease():
    # Far enough ahead that the shortened watch lease is still valid.
    return BlockhashLease("GHtXQBsoZHVnNFa9YevAzFr17DJjgHXk3ycTKD5xD3Zi", 1_300)


@pytest.fixture
def tokens():
    return {"SOL": SOL, "MBC": MBC, "USDC": USDC}


@pytest.fixture
def sol_mbc():
    return TokenPair(SOL, MBC)


@pytest.fixture
def base_config():
    return {
        'system': {'interval_seconds': 60, 'log_level': 'INFO', 'enable_trading': False},
        'strategy': {'slippage_bps': 50, 'rebalance_threshold': Decimal("0.5"), 'min_trade_value_usd': 0},
        'jupiter': {
            'base_url': 'http://jupiter.invalid',
            'timeout_seconds': 5,
            'priority_fee_lamports': 200000,
            'wrap_and_unwrap_sol': True,
            'fee_account': None,
        },
        'sender': {},
        'audit': {'trade_log': 'logs/trades.csv'},
    }


def build_unsigned_swap(payer: Keypair, blockhash: Hash = Hash.default()) -> bytes:
    """What the swap API returns: a message for `payer` with an empty signature slot."""
    ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1_000))
    message = MessageV0.try_compile(payer.pubkey(), [ix], [], blockhash)
    return bytes(VersionedTransaction.populate(message, [Signature.default()]))


@pytest.fixture
def unsigned_swap():
    return build_unsigned_swap
