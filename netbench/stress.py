# StressHarness opens many concurrent connections against a single listener
# and checks that every byte arrives, in order, on the accepting side.

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Optional, Set

from netbench import transport
from netbench.connection import Connection, Listener
from netbench.errors import ConfigError, IntegrityError, NetbenchError
from netbench.transport import TransportKind, format_address, parse_address

DEFAULT_SOURCE_SIZE = 200000
DEFAULT_CONNECTIONS = 4
DEFAULT_ITERATIONS = 100
DEFAULT_CHUNK_SIZE = 1024

_LOOPBACK = {'': '127.0.0.1', '0.0.0.0': '127.0.0.1', '::': '::1'}


@dataclass
class StressResult:
    connections: int
    iterations: int
    bytes_verified: int
    elapsed: float


def make_source_buffer(size: int = DEFAULT_SOURCE_SIZE, seed: int = 0) -> bytes:
    """Deterministic pseudo-random bytes; the same seed always yields the same buffer"""
    return random.Random(seed).randbytes(size)


class StressHarness:
    """Run N clients writing M overlapping windows of C bytes each

    Client k writes source[i:i+C] for i in 0..M-1; the verifier of every
    accepted connection reads M chunks of exactly C bytes and compares them
    to the same windows. The first short write, I/O error or mismatch fails
    the whole run.
    """

    def __init__(self, kind: TransportKind, address: str,
                 connections: int = DEFAULT_CONNECTIONS, iterations: int = DEFAULT_ITERATIONS,
                 chunk_size: int = DEFAULT_CHUNK_SIZE, source: Optional[bytes] = None, seed: int = 0,
                 logger: Optional[logging.Logger] = None, dial=transport.dial, listen=transport.listen):
        if connections < 1 or iterations < 1 or chunk_size < 1:
            raise ConfigError("connections, iterations and chunk size must all be at least 1")
        self.source = source if source is not None else make_source_buffer(seed=seed)
        if len(self.source) < iterations - 1 + chunk_size:
            raise ConfigError(f"source buffer of {len(self.source)} bytes is too small for "
                              f"{iterations} iterations of {chunk_size} bytes")
        self.kind = kind
        self.address = address
        self.connections = connections
        self.iterations = iterations
        self.chunk_size = chunk_size
        self.logger = logger or logging.getLogger(__name__)
        self._dial = dial
        self._listen = listen
        self.bytes_verified = 0
        self._sent = 0
        self._received = 0
        self._pending: Set[asyncio.Future] = set()
        self._outcome: Optional[asyncio.Future] = None

    def expected(self, iteration: int) -> bytes:
        return self.source[iteration:iteration + self.chunk_size]

    async def run(self) -> StressResult:
        """Run the harness once

        Raises:
            IntegrityError: A connection lost, corrupted or reordered data
            ProviderError: The listener could not be bound or a client could not dial
        """
        start = time.monotonic()
        listener = await self._listen(self.kind, self.address, logger=self.logger)
        _, port = listener.address
        requested_host, _ = parse_address(self.address)
        target = format_address((_LOOPBACK.get(requested_host, requested_host), port))
        self.logger.debug(f"stress: {self.connections} x {self.iterations} x {self.chunk_size} "
                          f"bytes over {self.kind.value} at {target}")

        self._outcome = asyncio.get_running_loop().create_future()
        try:
            self._spawn(self._accept_all(listener))
            for index in range(self.connections):
                self._spawn(self._client(index, target))
            await self._outcome
        finally:
            pending = list(self._pending)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            await listener.close()

        return StressResult(self.connections, self.iterations, self.bytes_verified,
                            time.monotonic() - start)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._fail(exc)
        elif not self._pending and not self._outcome.done():
            self._outcome.set_result(None)

    def _fail(self, exc: BaseException) -> None:
        # the first failure wins, before any cleanup of the failing side runs
        if not self._outcome.done():
            self._outcome.set_exception(exc)

    async def _accept_all(self, listener: Listener) -> None:
        # accepts are sequential, verifiers run concurrently
        for index in range(self.connections):
            connection = await listener.accept()
            self.logger.debug(f"stress: accepted {connection.remote_address}")
            self._spawn(self._verify(index, connection))

    async def _client(self, index: int, target: str) -> None:
        connection = await self._dial(self.kind, target, logger=self.logger)
        try:
            for i in range(self.iterations):
                try:
                    n = await connection.write(self.expected(i))
                except (OSError, NetbenchError) as e:
                    raise IntegrityError(index, i, f"write failed: {e}") from e
                if n != self.chunk_size:
                    raise IntegrityError(index, i, f"wrote {n} of {self.chunk_size} bytes")
        except IntegrityError as e:
            self._fail(e)
            raise
        finally:
            await connection.close()
        self._sent += 1
        self.logger.debug(f"{self._sent}/{self.connections} done sending")

    async def _verify(self, index: int, connection: Connection) -> None:
        peer = format_address(connection.remote_address)
        try:
            for i in range(self.iterations):
                try:
                    data = await connection.read_exactly(self.chunk_size)
                except (OSError, NetbenchError) as e:
                    raise IntegrityError(index, i, f"read from {peer} failed: {e}", accepted=True) from e
                expected = self.expected(i)
                if data != expected:
                    offset = next(k for k in range(len(data)) if data[k] != expected[k])
                    raise IntegrityError(index, i, f"content mismatch at byte {offset} from {peer}",
                                         accepted=True)
                self.bytes_verified += len(data)
        except IntegrityError as e:
            self._fail(e)
            raise
        finally:
            await connection.close()
        self._received += 1
        self.logger.debug(f"{self._received}/{self.connections} done receiving")
