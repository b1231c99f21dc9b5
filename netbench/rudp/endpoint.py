# The endpoint bridges the OS datagram socket and our sessions. A dialing
# endpoint owns a connected UDP socket with exactly one session; a listening
# endpoint demultiplexes many sessions by peer address.

import asyncio
import logging
import socket
from typing import Dict, Optional

from netbench.connection import Address, Listener, address_of
from netbench.errors import ConnectionClosedError
from netbench.rudp.config import RUDPConfig
from netbench.rudp.connection import RUDPConnection
from netbench.rudp.message import Message, ReceiverMessage, SenderMessage, parse_message, serialize_message
from netbench.rudp.wrapping_integers import Wrap32

logger = logging.getLogger(__name__)


class RUDPEndpoint(asyncio.DatagramProtocol):
    def __init__(self, config: RUDPConfig, log: logging.Logger, listener: Optional['RUDPListener'] = None):
        self.config = config
        self.logger = log
        self.listener = listener
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.sessions: Dict[Address, RUDPConnection] = {}
        self.closing = False

    @property
    def local_address(self) -> Address:
        if self.transport is None:
            return ('', 0)
        return address_of(self.transport.get_extra_info('sockname'))

    def connection_made(self, transport):
        self.transport = transport
        sock = transport.get_extra_info('socket')
        if sock is None:
            return
        for option in (socket.SO_RCVBUF, socket.SO_SNDBUF):
            try:
                sock.setsockopt(socket.SOL_SOCKET, option, self.config.socket_buffer_size)
            except OSError as e:
                self.logger.debug(f"rudp could not resize socket buffer: {e}")

    def datagram_received(self, data, addr):
        try:
            message = parse_message(data)
        except ValueError as e:
            self.logger.debug(f"rudp dropping datagram from {addr}: {e}")
            return

        address = address_of(addr)
        connection = self.sessions.get(address)
        if connection is None and self.listener is None and self.sessions:
            # a connected socket only ever hears from its peer
            connection = next(iter(self.sessions.values()))

        if connection is None:
            if message.sender_message.SYN and not message.sender_message.RST and self._accepting():
                self.logger.debug(f"rudp new connection from {address}")
                connection = self.open_session(address)
            else:
                if not message.sender_message.RST:
                    self._reset(address, message)
                return

        connection.receive(message)

    def error_received(self, exc):
        self.logger.debug(f"rudp socket error: {exc}")
        # ICMP errors are only reported on connected, i.e. dialing, sockets
        if self.listener is None:
            for connection in list(self.sessions.values()):
                connection.abort(exc)

    def connection_lost(self, exc):
        for connection in list(self.sessions.values()):
            connection.abort(exc or ConnectionClosedError("socket closed"))

    def open_session(self, address: Address) -> RUDPConnection:
        connection = RUDPConnection(self, address, self.config, self.logger,
                                    on_established=self._established)
        self.sessions[address] = connection
        return connection

    def sendto(self, data: bytes, address: Address) -> None:
        if self.transport is None or self.transport.is_closing():
            return
        if self.listener is None:
            self.transport.sendto(data)
        else:
            self.transport.sendto(data, address)

    def detach(self, connection: RUDPConnection) -> None:
        if self.sessions.get(connection.remote_address) is connection:
            del self.sessions[connection.remote_address]
        if self.listener is None or (self.closing and not self.sessions):
            self._close_transport()

    def close_when_idle(self) -> None:
        """Stop accepting; the socket closes once the last session is done"""
        self.closing = True
        if not self.sessions:
            self._close_transport()

    def _accepting(self) -> bool:
        return self.listener is not None and not self.closing and not self.listener.closed

    def _established(self, connection: RUDPConnection) -> None:
        if self.listener is not None:
            self.listener._deliver(connection)

    def _reset(self, address: Address, message: Message) -> None:
        seqno = message.receiver_message.ackno or Wrap32(0)
        reply = Message(SenderMessage(seqno=seqno, RST=True), ReceiverMessage(RST=True))
        self.sendto(serialize_message(reply), address)

    def _close_transport(self) -> None:
        if self.transport is not None and not self.transport.is_closing():
            self.transport.close()


class RUDPListener(Listener):
    def __init__(self, endpoint: RUDPEndpoint):
        super().__init__()
        self.endpoint = endpoint

    @property
    def address(self) -> Address:
        return self.endpoint.local_address

    async def _shutdown(self) -> None:
        self.endpoint.close_when_idle()


async def dial(address: Address, config: Optional[RUDPConfig] = None,
               log: Optional[logging.Logger] = None) -> RUDPConnection:
    """Open a session with a listening endpoint

    Args:
        address: Remote (host, port)
        config: Transport tunables

    Returns:
        Established RUDPConnection

    Raises:
        OSError: The peer refused or the network is unreachable
        asyncio.TimeoutError: No handshake within config.connect_timeout
    """
    config = config or RUDPConfig()
    log = log or logger
    loop = asyncio.get_running_loop()
    host, port = address
    transport, endpoint = await loop.create_datagram_endpoint(
        lambda: RUDPEndpoint(config, log), remote_addr=(host or '127.0.0.1', port))
    connection = endpoint.open_session(address_of(transport.get_extra_info('peername')))
    connection.push()
    try:
        await asyncio.wait_for(connection.wait_established(), config.connect_timeout / 1000)
    except BaseException:
        connection.abort(ConnectionClosedError("dial abandoned"))
        raise
    log.debug(f"rudp connected to {connection.remote_address}")
    return connection


async def listen(address: Address, config: Optional[RUDPConfig] = None,
                 log: Optional[logging.Logger] = None) -> RUDPListener:
    """Bind a listening endpoint on (host, port); port 0 picks a free port"""
    config = config or RUDPConfig()
    log = log or logger
    loop = asyncio.get_running_loop()
    host, port = address
    listener = RUDPListener(None)
    _, endpoint = await loop.create_datagram_endpoint(
        lambda: RUDPEndpoint(config, log, listener), local_addr=(host or '0.0.0.0', port))
    listener.endpoint = endpoint
    log.debug(f"rudp listening at {listener.address}")
    return listener
