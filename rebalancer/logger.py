# rebalancer/logger.py
import asyncio
import logging
import os
import sys
from typing import Optional

import aiofiles
from aiocsv import AsyncWriter

from .models import TRADE_LOG_HEADER, TradeResult


class AsyncAuditLogger:
    """
    Non-blocking CSV audit trail of trade attempts.
    Rows go through an asyncio Queue so disk I/O never stalls the
    rebalancing loop.
    """
    def __init__(self, filepath: str, logger: Optional[logging.Logger] = None):
        self.filepath = filepath
        self.logger = logger or logging.getLogger(__name__)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None

    async def start(self):
        """
        Creates the log file (with a header row when new) and starts the
        background writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        is_new = not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0
        if is_new:
            async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(TRADE_LOG_HEADER)

        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_trade(self, result: TradeResult):
        """
        Queues one trade record. Returns immediately.
        """
        await self._queue.put(result.as_row())

    async def stop(self):
        """Flushes pending rows and stops the writer."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        await asyncio.gather(self._worker_task, return_exceptions=True)
        self._worker_task = None

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except OSError as e:
                # Disk trouble must not take the bot down
                self.logger.error(f"AUDIT LOG FAILURE: {e}")
            finally:
                self._queue.task_done()


def setup_console_logger(name: str, level: str):
    """
    Sets up the standard Python logger for console output.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
