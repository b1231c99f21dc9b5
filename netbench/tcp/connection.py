# Stream transport: thin Connection/Listener wrappers over asyncio streams (TCP).

import asyncio
import logging
import socket
from typing import Optional

from netbench.connection import Address, Connection, Listener, address_of
from netbench.errors import ConnectionClosedError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5.0  # seconds
STREAM_LIMIT = 1 << 20


class StreamConnection(Connection):
    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        super().__init__()
        self.reader = reader
        self.writer = writer
        self._closed = False
        self._remote = address_of(writer.get_extra_info('peername'))
        self._local = address_of(writer.get_extra_info('sockname'))
        sock = writer.get_extra_info('socket')
        if sock is not None and sock.family in (socket.AF_INET, socket.AF_INET6):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    @property
    def remote_address(self) -> Address:
        return self._remote

    @property
    def local_address(self) -> Address:
        return self._local

    @property
    def closed(self) -> bool:
        return self._closed

    async def _read(self, size: int) -> bytes:
        if self._closed:
            raise ConnectionClosedError(f"connection to {self._remote} is closed")
        return await self.reader.read(size)

    async def _write(self, data: bytes) -> int:
        if self._closed:
            raise ConnectionClosedError(f"connection to {self._remote} is closed")
        self.writer.write(data)
        await self.writer.drain()
        return len(data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Closing {self._remote}: {e}")


class StreamListener(Listener):
    def __init__(self, log: Optional[logging.Logger] = None):
        super().__init__()
        self.logger = log or logger
        self.server: Optional[asyncio.AbstractServer] = None

    def _accepted(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        connection = StreamConnection(reader, writer)
        self.logger.debug(f"tcp accepted connection from {connection.remote_address}")
        self._deliver(connection)

    @property
    def address(self) -> Address:
        return address_of(self.server.sockets[0].getsockname())

    async def _shutdown(self) -> None:
        # Server.wait_closed() would also wait for accepted connections
        self.server.close()


async def dial(address: Address, log: Optional[logging.Logger] = None,
               timeout: float = CONNECT_TIMEOUT) -> StreamConnection:
    """Connect to a TCP listener

    Args:
        address: Remote (host, port)
        timeout: Seconds to wait for the handshake

    Returns:
        Connected StreamConnection
    """
    log = log or logger
    host, port = address
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port, limit=STREAM_LIMIT), timeout)
    connection = StreamConnection(reader, writer)
    log.debug(f"tcp connected to {connection.remote_address}")
    return connection


async def listen(address: Address, log: Optional[logging.Logger] = None) -> StreamListener:
    """Bind a TCP listener on (host, port); port 0 picks a free port"""
    listener = StreamListener(log)
    host, port = address
    listener.server = await asyncio.start_server(
        listener._accepted, host or None, port, limit=STREAM_LIMIT, reuse_address=True)
    listener.logger.debug(f"tcp listening at {listener.address}")
    return listener

