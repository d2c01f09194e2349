"""
CdrFeed: drives the backend from a stream of JSON CDRs.

Stands in for the telephony host: one JSON object per line arrives on a
StreamReader, each becomes a CallRecord, and log_record() runs on a thread
pool so many calls complete concurrently. Reload requests and shutdown come
in from signal handlers.
"""

import asyncio
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from cdr_amqp.backend import CdrAmqpBackend
from cdr_amqp.errors import EncodingError
from cdr_amqp.metrics import PublishMetrics
from cdr_amqp.records import CallRecord

logger = logging.getLogger(__name__)


class CdrFeed:
    """
    Reads CDR lines and dispatches them to the backend.

    Usage (main.py):
        feed = CdrFeed(backend, workers=8)
        await feed.run(reader)      # until EOF or shutdown()
        feed.request_reload()       # from SIGHUP
        feed.shutdown()             # from SIGTERM / SIGINT
    """

    DEFAULT_WORKERS = 8
    DEFAULT_METRICS_INTERVAL_SECONDS = 60.0

    def __init__(
        self,
        backend: CdrAmqpBackend,
        workers: int = DEFAULT_WORKERS,
        metrics: Optional[PublishMetrics] = None,
        metrics_interval: float = DEFAULT_METRICS_INTERVAL_SECONDS,
    ) -> None:
        self._backend = backend
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cdr-amqp")
        self._metrics = metrics
        self._metrics_interval = metrics_interval
        self._stop: asyncio.Event = asyncio.Event()
        self._pending: set[asyncio.Future[bool]] = set()
        self.dispatched = 0
        self.skipped = 0

    def parse_line(self, line: bytes | str) -> Optional[CallRecord]:
        """
        Decode one input line into a CallRecord.

        Blank lines and malformed CDRs return None (malformed ones are logged).
        """
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.strip()
        if not line:
            return None
        try:
            return CallRecord.from_dict(json.loads(line))
        except (json.JSONDecodeError, EncodingError) as exc:
            logger.error("Skipping malformed CDR line: %s", exc)
            self.skipped += 1
            return None

    def dispatch(self, record: CallRecord) -> "asyncio.Future[bool]":
        """Run log_record() for record on the worker pool."""
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, self._backend.log_record, record)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        self.dispatched += 1
        return future

    async def run(self, reader: asyncio.StreamReader) -> None:
        """
        Consume reader until EOF or shutdown(), then wait for in-flight publishes.

        Args:
            reader: Stream of newline-delimited JSON CDRs.
        """
        flusher = None
        if self._metrics is not None:
            flusher = asyncio.create_task(self._flush_metrics_periodically())

        stop_wait = asyncio.create_task(self._stop.wait())
        try:
            while not self._stop.is_set():
                read = asyncio.create_task(reader.readline())
                done, _ = await asyncio.wait(
                    {read, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if read not in done:
                    read.cancel()
                    break
                line = read.result()
                if not line:
                    break  # EOF
                record = self.parse_line(line)
                if record is not None:
                    self.dispatch(record)
        finally:
            stop_wait.cancel()
            if self._pending:
                await asyncio.gather(*self._pending, return_exceptions=True)
            self._stop.set()
            if flusher is not None:
                flusher.cancel()
            self._executor.shutdown(wait=True)
            logger.info(
                "CdrFeed finished | dispatched=%d | skipped=%d", self.dispatched, self.skipped
            )

    def request_reload(self) -> Optional["asyncio.Future[bool]"]:
        """
        Reload configuration off the event loop (opening a connection blocks).

        Ignored once shutdown has begun; returns None in that case.
        """
        if self._stop.is_set():
            logger.warning("Reload requested during shutdown — ignoring")
            return None
        logger.info("Reload requested")
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(self._executor, self._backend.reload)

    def shutdown(self) -> None:
        """Stop reading; run() returns once in-flight publishes complete."""
        logger.info("CdrFeed shutdown initiated")
        self._stop.set()

    async def _flush_metrics_periodically(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self._metrics_interval)
            await loop.run_in_executor(None, self._metrics.flush)
