"""
Append-only JSON-lines record of execution outcomes.
"""
import json
import logging
import queue
from datetime import datetime, timezone
from logging.handlers import QueueListener
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


class TransactionLog:
    """
    Non-blocking sink for ExecutionResult records.

    record() only enqueues; a QueueListener thread writes whole lines to the
    file, so concurrent executions never interleave partial records. When the
    buffer is full the record is dropped and counted.
    """

    def __init__(self, path: Union[str, Path] = "logs/transactions.log", max_buffer: int = 1000):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.dropped = 0
        self._queue: queue.Queue = queue.Queue(maxsize=max_buffer)
        self._handler = logging.FileHandler(self.path, encoding="utf-8")
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self._listener = QueueListener(self._queue, self._handler)
        self._running = False

    def start(self):
        if not self._running:
            self._listener.start()
            self._running = True

    def stop(self):
        """Flush pending records and close the file."""
        if self._running:
            self._listener.stop()
            self._running = False
        self._handler.close()

    def record(self, result):
        """Queue one result for writing. Never blocks."""
        entry = {"ts": datetime.now(timezone.utc).isoformat(), **result.to_record()}
        log_record = logging.makeLogRecord({
            "name": "transactions",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": json.dumps(entry, default=str),
        })
        try:
            self._queue.put_nowait(log_record)
        except queue.Full:
            self.dropped += 1
            logger.warning(
                f"Transaction log buffer full, dropped {entry['status']} record for {entry['pair']} "
                f"({self.dropped} dropped so far)"
            )
