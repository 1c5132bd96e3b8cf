# rebalancer/execution.py
import logging
from typing import Optional

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from .exceptions import SubmissionError
from .models import BlockhashLease, SubmissionOutcome
from .transaction_sender import TransactionSender


class ExecutionService:
    """
    Signs Jupiter-built swap transactions and hands them to the
    TransactionSender. The keypair is read-only and shared by all pairs.
    """
    def __init__(self, ledger, keypair: Keypair, sender: TransactionSender, logger: logging.Logger):
        self.ledger = ledger
        self.keypair = keypair
        self.sender = sender
        self.logger = logger

    def _signed(self, unsigned_tx: bytes) -> VersionedTransaction:
        try:
            tx = VersionedTransaction.from_bytes(unsigned_tx)
            return VersionedTransaction(tx.message, [self.keypair])
        except Exception as e:
            # solders reports a wrong fee payer as SignerError, not ValueError
            raise SubmissionError(f"could not sign swap transaction: {type(e).__name__}: {e}") from e

    def sign(self, unsigned_tx: bytes) -> bytes:
        """
        Signs the swap message with our key and returns the wire bytes.
        """
        return bytes(self._signed(unsigned_tx))

    async def execute_swap(self, unsigned_tx: bytes,
                           last_valid_block_height: Optional[int] = None) -> SubmissionOutcome:
        """
        Sign, resolve the blockhash lease, submit and wait for a terminal
        outcome. Errors raised before submission propagate to the caller.

        The lease is the blockhash already in the message when the swap API
        reported its last valid height, otherwise a freshly fetched one.
        """
        signed = self._signed(unsigned_tx)
        serialized = bytes(signed)

        if last_valid_block_height is not None:
            lease = BlockhashLease(str(signed.message.recent_blockhash), int(last_valid_block_height))
        else:
            # A lease is never reused across submissions.
            lease = await self.ledger.get_latest_blockhash()

        self.logger.info(f"⚡ EXECUTION TRIGGERED: {len(serialized)} bytes | lease until {lease.last_valid_block_height}")
        return await self.sender.send_and_confirm(serialized, lease)
