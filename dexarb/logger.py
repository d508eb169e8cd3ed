# dexarb/logger.py
import asyncio
import logging
import os
import sys
from typing import Any, List, Optional

import aiofiles
from aiocsv import AsyncWriter

AUDIT_HEADER = [
    "timestamp", "strategy", "leg", "status", "failure_kind",
    "tx_id", "input_volume", "net_profit", "fail_reason",
]


class AsyncAuditLogger:
    """
    Append-only CSV trail of every ledger record.
    Disk I/O runs in a background task fed by an asyncio Queue, so the
    trading loop never waits on the filesystem.
    """
    def __init__(self, filepath: str):
        self.filepath = filepath
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None

    async def start(self):
        directory = os.path.dirname(self.filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        is_new = not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0
        if is_new:
            async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(AUDIT_HEADER)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_trade(self, row: List[Any]):
        await self._queue.put(row)

    async def flush(self):
        """Wait until every queued row has hit the disk."""
        await self._queue.join()

    async def stop(self):
        if self._worker_task is None:
            return
        await self.flush()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except OSError as e:
                # the audit trail must never take the engine down
                print(f"AUDIT LOGGING FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()


def setup_console_logger(name: str, level: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
