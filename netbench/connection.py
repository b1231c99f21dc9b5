# Connection and Listener are the contract every transport provider implements.
# The benchmark driver, echo server and stress harness only ever talk to these.

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from netbench.errors import ConnectionClosedError, ConnectionTimeout, ShortReadError

logger = logging.getLogger(__name__)

Address = Tuple[str, int]

# Marks the end of a listener's accept queue
_CLOSED = object()


def address_of(raw) -> Address:
    """Reduce a socket name to (host, port); IPv6 names also carry flowinfo and scope id"""
    if not raw:
        return ('', 0)
    return raw[0], raw[1]


class Connection(ABC):
    """Abstract base class for an ordered, reliable, bidirectional byte stream

    Subclasses implement `_read`, `_write`, `close` and the address
    properties. Deadline handling lives here so both providers behave the
    same way.
    """

    def __init__(self):
        self._read_deadline: Optional[float] = None
        self._write_deadline: Optional[float] = None
        self._deadline_moved: Optional[asyncio.Future] = None

    @property
    @abstractmethod
    def remote_address(self) -> Address:
        """(host, port) of the peer"""

    @property
    @abstractmethod
    def local_address(self) -> Address:
        """(host, port) this side is bound to"""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once close() has been called"""

    @abstractmethod
    async def _read(self, size: int) -> bytes:
        """Return up to size bytes, b'' at end of stream"""

    @abstractmethod
    async def _write(self, data: bytes) -> int:
        """Transfer all of data or raise"""

    @abstractmethod
    async def close(self) -> None:
        """Terminate the connection. Safe to call more than once."""

    def set_read_deadline(self, deadline: Optional[float]) -> None:
        """Fail reads that are still waiting at `deadline`

        Args:
            deadline: Absolute time.monotonic() value, or None to clear
        """
        self._read_deadline = deadline
        # a pending read re-evaluates its timeout
        if self._deadline_moved is not None and not self._deadline_moved.done():
            self._deadline_moved.set_result(None)

    def set_write_deadline(self, deadline: Optional[float]) -> None:
        """Fail writes that have not completed at `deadline`"""
        self._write_deadline = deadline

    def set_deadline(self, deadline: Optional[float]) -> None:
        self.set_read_deadline(deadline)
        self.set_write_deadline(deadline)

    async def read(self, size: int) -> bytes:
        """Read up to size bytes

        Args:
            size: Maximum number of bytes to return

        Returns:
            Received bytes, b'' once the peer has finished sending

        Raises:
            ConnectionTimeout: The read deadline passed before data arrived
        """
        if size <= 0:
            return b''
        loop = asyncio.get_running_loop()
        while True:
            timeout = None
            if self._read_deadline is not None:
                timeout = self._read_deadline - time.monotonic()
                if timeout <= 0:
                    raise ConnectionTimeout(f"read from {self.remote_address} timed out")

            moved = self._deadline_moved = loop.create_future()
            reading = asyncio.ensure_future(self._read(size))
            try:
                done, _ = await asyncio.wait((reading, moved), timeout=timeout,
                                             return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                reading.cancel()
                raise
            finally:
                if not moved.done():
                    moved.cancel()
                if self._deadline_moved is moved:
                    self._deadline_moved = None

            if reading in done:
                return reading.result()

            # _read only consumes buffered data after its last await, so
            # cancelling it here never loses bytes
            reading.cancel()
            await asyncio.wait((reading,))
            if not reading.cancelled() and reading.exception() is None:
                return reading.result()
            if moved not in done:
                raise ConnectionTimeout(f"read from {self.remote_address} timed out")

    async def read_exactly(self, n: int) -> bytes:
        """Read exactly n bytes or raise ShortReadError"""
        buffer = bytearray()
        while len(buffer) < n:
            chunk = await self.read(n - len(buffer))
            if not chunk:
                raise ShortReadError(n, bytes(buffer))
            buffer += chunk
        return bytes(buffer)

    async def write(self, data: bytes) -> int:
        """Write all of data to the connection

        Returns:
            Number of bytes written, always len(data)

        Raises:
            ConnectionTimeout: The write deadline passed first
        """
        if self._write_deadline is None:
            return await self._write(data)
        timeout = self._write_deadline - time.monotonic()
        if timeout <= 0:
            raise ConnectionTimeout(f"write to {self.remote_address} timed out")
        try:
            return await asyncio.wait_for(self._write(data), timeout)
        except asyncio.TimeoutError:
            raise ConnectionTimeout(f"write to {self.remote_address} timed out") from None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class Listener(ABC):
    """Abstract base class for a bound endpoint producing accepted Connections

    Providers hand finished connections to `_deliver`; `accept` pops them in
    arrival order.
    """

    def __init__(self):
        self._backlog: asyncio.Queue = asyncio.Queue()
        self._closed = False
        # connections that completed their handshake after close()
        self._late_closes: set = set()

    @property
    @abstractmethod
    def address(self) -> Address:
        """Actual (host, port) the listener is bound to"""

    @abstractmethod
    async def _shutdown(self) -> None:
        """Release the provider's listening resources"""

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, connection: Connection) -> None:
        if self._closed:
            task = asyncio.ensure_future(connection.close())
            self._late_closes.add(task)
            task.add_done_callback(self._late_close_done)
            return
        self._backlog.put_nowait(connection)

    def _late_close_done(self, task: asyncio.Future) -> None:
        self._late_closes.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"closing a connection delivered after listener close failed: {task.exception()}")

    async def accept(self) -> Connection:
        """Wait for the next incoming connection

        Raises:
            ConnectionClosedError: The listener was closed
        """
        if self._closed:
            raise ConnectionClosedError("listener is closed")
        connection = await self._backlog.get()
        if connection is _CLOSED:
            # leave the marker for any other waiter
            self._backlog.put_nowait(_CLOSED)
            raise ConnectionClosedError("listener is closed")
        return connection

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        pending = []
        while not self._backlog.empty():
            pending.append(self._backlog.get_nowait())
        self._backlog.put_nowait(_CLOSED)
        for connection in pending:
            await connection.close()
        await self._shutdown()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Connection:
        try:
            return await self.accept()
        except ConnectionClosedError:
            raise StopAsyncIteration

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
