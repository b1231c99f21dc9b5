# BenchmarkDriver floods one connection in both directions and reports the
# throughput it observes until the run is terminated.

import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from typing import Callable, Optional, TextIO

from netbench.connection import Connection
from netbench.errors import NetbenchError
from netbench.termination import Termination

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 65536
REPORT_INTERVAL = 1.0   # seconds


@dataclass
class ByteCounter:
    # each field has exactly one writer, the task for that direction
    sent: int = 0
    received: int = 0


def format_report(prefix: str, nbytes: int, elapsed: float) -> str:
    """Format one throughput line, e.g. "Sent 1024 bytes in 2 sec, 512 Bps"

    Elapsed time is truncated to whole seconds; a run shorter than one
    second is reported as one second.
    """
    seconds = max(int(elapsed), 1)
    return f"{prefix} {nbytes} bytes in {seconds} sec, {nbytes // seconds} Bps"


class BenchmarkDriver:
    def __init__(self, connection: Connection, block_size: int, termination: Termination,
                 logger: Optional[logging.Logger] = None, out: Optional[TextIO] = None,
                 start_time: Optional[float] = None, clock: Callable[[], float] = time.monotonic,
                 report_interval: float = REPORT_INTERVAL):
        if block_size <= 0:
            raise ValueError(f"block size must be positive, got {block_size}")
        self.connection = connection
        self.block_size = block_size
        self.termination = termination
        self.logger = logger or logging.getLogger(__name__)
        self.out = out
        self.clock = clock
        self.start_time = start_time if start_time is not None else clock()
        self.report_interval = report_interval
        self.counter = ByteCounter()
        # the filler source: a block of zero bytes, reused for every write
        self._block = bytes(block_size)

    async def run(self) -> ByteCounter:
        """Drive the connection until termination, then print the final result

        Returns:
            The final byte counters
        """
        self.logger.debug(f"piping zeros to {self.connection.remote_address}")
        tasks = [
            asyncio.ensure_future(self._send_loop()),
            asyncio.ensure_future(self._receive_loop()),
            asyncio.ensure_future(self._report_loop()),
        ]
        try:
            await self.termination.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.connection.close()

        self._print("Quit now, final result:")
        self.report()
        return self.counter

    def report(self) -> None:
        elapsed = self.clock() - self.start_time
        self._print(format_report("Sent", self.counter.sent, elapsed))
        self._print(format_report("Recv", self.counter.received, elapsed))

    async def _send_loop(self) -> None:
        try:
            while True:
                self.counter.sent += await self.connection.write(self._block)
        except (OSError, NetbenchError) as e:
            self.logger.debug(f"sender stopped: {e}")

    async def _receive_loop(self) -> None:
        try:
            while True:
                data = await self.connection.read(self.block_size)
                if not data:
                    self.logger.debug("receiver reached end of stream")
                    return
                self.counter.received += len(data)
        except (OSError, NetbenchError) as e:
            self.logger.debug(f"receiver stopped: {e}")

    async def _report_loop(self) -> None:
        while True:
            await asyncio.sleep(self.report_interval)
            self.report()

    def _print(self, line: str) -> None:
        print(line, file=self.out if self.out is not None else sys.stdout, flush=True)
