# rebalancer/transaction_sender.py
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .exceptions import (
    ConfirmationTimeout, LeaseExpired, LedgerError, LedgerUnavailable,
    OnChainFailure, SubmissionError,
)
from .models import BlockhashLease, SignatureStatus, SubmissionOutcome, TransactionRecord


@dataclass
class SenderSettings:
    """
    Timing of the send/confirm protocol. Every activity of one attempt
    reads the same deadline, derived from `max_duration` at first send.
    """
    max_duration: float = 60.0
    resend_interval: float = 2.0
    poll_interval: float = 5.0
    watch_interval: float = 0.5
    lease_safety_margin: int = 150
    fetch_attempts: int = 5
    fetch_interval: float = 3.0
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def from_config(cls, cfg: Optional[dict]) -> "SenderSettings":
        cfg = cfg or {}
        defaults = cls()
        return cls(
            max_duration=float(cfg.get('max_duration_seconds', defaults.max_duration)),
            resend_interval=float(cfg.get('resend_interval_seconds', defaults.resend_interval)),
            poll_interval=float(cfg.get('poll_interval_seconds', defaults.poll_interval)),
            watch_interval=float(cfg.get('watch_interval_seconds', defaults.watch_interval)),
            lease_safety_margin=int(cfg.get('lease_safety_margin_blocks', defaults.lease_safety_margin)),
            fetch_attempts=int(cfg.get('fetch_attempts', defaults.fetch_attempts)),
            fetch_interval=float(cfg.get('fetch_interval_seconds', defaults.fetch_interval)),
        )


class TransactionSender:
    """
    Gets a signed transaction finalized on a congestible network.

    Lifecycle of one attempt:
      1. send once (no preflight); a failing send raises SubmissionError
      2. check right away against the original lease
      3. otherwise race a confirmation watch (shortened lease) against a
         status poll, while a resend loop re-broadcasts the same bytes
      4. fetch the finalized record with a short bounded retry

    The result is always one SubmissionOutcome: FINALIZED, FAILED,
    EXPIRED or TIMED_OUT. No background task outlives the call.
    """
    def __init__(self, ledger, logger: logging.Logger, settings: Optional[SenderSettings] = None):
        self.ledger = ledger
        self.logger = logger
        self.settings = settings or SenderSettings()

    async def send_and_confirm(self, serialized: bytes, lease: BlockhashLease) -> SubmissionOutcome:
        try:
            signature = await self.ledger.send_raw_transaction(serialized)
        except LedgerError as e:
            raise SubmissionError(f"initial send failed: {e}") from e

        # Single source of truth for every activity below.
        deadline = self.settings.clock() + self.settings.max_duration
        self.logger.info(f"📤 SENT: {signature} | lease valid until block {lease.last_valid_block_height}")

        try:
            record = await self._check_now(signature, lease)
            if record is None:
                watch_lease = lease.shortened(self.settings.lease_safety_margin)
                await self._race(serialized, signature, watch_lease, deadline)
                record = await self._fetch_record(signature)
        except OnChainFailure as e:
            self.logger.error(f"❌ TX FAILED: {signature} | {e.err}")
            return SubmissionOutcome.failed(signature, e.err)
        except LeaseExpired:
            self.logger.warning(f"⌛ TX EXPIRED: {signature} | blockhash lease passed")
            return SubmissionOutcome.expired(signature)
        # Also reached before the deadline when a finalized record cannot be read.
        except ConfirmationTimeout:
            self.logger.warning(f"⏱️ TX TIMED OUT: {signature} | outcome unknown")
            return SubmissionOutcome.timed_out(signature)

        if record.err is not None:
            self.logger.error(f"❌ TX FAILED: {signature} | {record.err}")
            return SubmissionOutcome.failed(signature, record.err, transaction=record)

        self.logger.info(f"✅ TX FINALIZED: {signature} | slot {record.slot}")
        return SubmissionOutcome.finalized(signature, record)

    async def _check_now(self, signature: str, lease: BlockhashLease) -> Optional[TransactionRecord]:
        """
        One confirmation check against the original lease.
        Returns the record when already finalized, None when still pending.
        Errors other than the terminal ones propagate.
        """
        status = await self.ledger.get_signature_status(signature)
        if self._is_terminal(signature, status):
            return await self.ledger.get_transaction(signature)

        if status is None:
            height = await self.ledger.get_block_height()
            if height > lease.last_valid_block_height:
                raise LeaseExpired(signature, lease.last_valid_block_height)
        return None

    def _is_terminal(self, signature: str, status: Optional[SignatureStatus]) -> bool:
        if status is None:
            return False
        if status.err is not None:
            raise OnChainFailure(signature, status.err)
        return status.is_finalized

    async def _race(self, serialized: bytes, signature: str, watch_lease: BlockhashLease, deadline: float):
        """
        Runs resend, watch and poll until the first terminal observation.
        The result slot is single-assignment: the first activity to finish
        decides, later results are dropped.
        """
        slot = asyncio.get_running_loop().create_future()
        stop = asyncio.Event()

        tasks = [
            asyncio.create_task(self._resend_loop(serialized, signature, stop)),
            asyncio.create_task(self._settle(slot, self._watch(signature, watch_lease, deadline, stop))),
            asyncio.create_task(self._settle(slot, self._poll(signature, deadline, stop))),
        ]
        try:
            return await slot
        finally:
            stop.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    async def _settle(slot: asyncio.Future, activity: Awaitable[Any]):
        try:
            result = await activity
        except Exception as e:
            if not slot.done():
                slot.set_exception(e)
            return
        if not slot.done():
            slot.set_result(result)

    async def _pause(self, stop: asyncio.Event, seconds: float, deadline: Optional[float] = None):
        """Sleeps `seconds` (capped at the deadline) unless stopped first."""
        if deadline is not None:
            seconds = min(seconds, max(0.0, deadline - self.settings.clock()))
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _resend_loop(self, serialized: bytes, signature: str, stop: asyncio.Event):
        # Same bytes, same signature: re-broadcasting can never double-spend.
        while True:
            await self._pause(stop, self.settings.resend_interval)
            if stop.is_set():
                return
            try:
                await self.ledger.send_raw_transaction(serialized)
                self.logger.debug(f"🔁 RESENT: {signature}")
            except LedgerError as e:
                self.logger.warning(f"Failed to resend transaction {signature}: {e}")

    async def _watch(self, signature: str, lease: BlockhashLease, deadline: float,
                     stop: asyncio.Event) -> Optional[SignatureStatus]:
        """
        Watches the signature until finalized or until the chain passes
        the (shortened) lease, in which case LeaseExpired is raised.
        """
        while not stop.is_set():
            if self.settings.clock() >= deadline:
                return None
            try:
                status = await self.ledger.get_signature_status(signature)
                if self._is_terminal(signature, status):
                    return status
                height = await self.ledger.get_block_height()
            except LedgerUnavailable as e:
                self.logger.warning(f"Confirmation watch for {signature}: {e}")
            else:
                if status is None and height > lease.last_valid_block_height:
                    raise LeaseExpired(signature, lease.last_valid_block_height)
            await self._pause(stop, self.settings.watch_interval, deadline)
        return None

    async def _poll(self, signature: str, deadline: float,
                    stop: asyncio.Event) -> Optional[SignatureStatus]:
        """
        Slow status poll. Also the activity that enforces the deadline.
        """
        while not stop.is_set():
            await self._pause(stop, self.settings.poll_interval, deadline)
            if stop.is_set():
                break
            if self.settings.clock() >= deadline:
                self.logger.warning(f"Total process time exceeded for {signature}")
                return None
            try:
                status = await self.ledger.get_signature_status(signature)
            except LedgerUnavailable as e:
                self.logger.warning(f"Status poll for {signature}: {e}")
                continue
            if self._is_terminal(signature, status):
                return status
        return None

    async def _fetch_record(self, signature: str) -> TransactionRecord:
        """
        Bounded retry for the finalized transaction record.
        Raises ConfirmationTimeout when it never shows up.
        """
        attempts = max(1, self.settings.fetch_attempts)
        for attempt in range(1, attempts + 1):
            try:
                record = await self.ledger.get_transaction(signature)
            except LedgerUnavailable as e:
                self.logger.warning(f"Fetching {signature} (attempt {attempt}/{attempts}): {e}")
                record = None
            if record is not None:
                return record
            if attempt < attempts:
                await asyncio.sleep(self.settings.fetch_interval)
        raise ConfirmationTimeout(f"{signature} not found after {attempts} attempts")
