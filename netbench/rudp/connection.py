import asyncio
import logging
import random
from typing import Callable, Optional

from netbench.connection import Address, Connection
from netbench.errors import ConnectionClosedError
from netbench.rudp.config import RUDPConfig
from netbench.rudp.message import Message, SenderMessage, serialize_message
from netbench.rudp.reassembler import Reassembler
from netbench.rudp.receiver import RUDPReceiver
from netbench.rudp.sender import RUDPSender
from netbench.rudp.wrapping_integers import Wrap32
from netbench.util.byte_stream import ByteStream


# RUDPConnection combines the sender and receiver of one session and exposes
# them to the application as a Connection. The endpoint feeds it datagrams
# through receive(); a ticking task drives retransmission and close linger.
class RUDPConnection(Connection):
    def __init__(self, endpoint, remote_address: Address, config: RUDPConfig,
                 log: logging.Logger, on_established: Optional[Callable[['RUDPConnection'], None]] = None):
        super().__init__()
        self.endpoint = endpoint
        self.config = config
        self.logger = log
        self._remote = remote_address
        self.outbound_stream = ByteStream(config.send_buffer_size)
        self.inbound_stream = ByteStream(config.receive_buffer_size)
        isn = Wrap32(config.isn if config.isn is not None else random.getrandbits(32))
        self.sender = RUDPSender(self.outbound_stream, isn, config)
        self.receiver = RUDPReceiver(Reassembler(self.inbound_stream))
        self.need_send = False  # reply even when there is nothing new to send
        self.advertised_window = config.receive_buffer_size
        self.established = False
        self.error: Optional[BaseException] = None
        self._on_established = on_established
        self._closed = False      # closed by the application
        self._finished = False    # removed from the endpoint
        self._linger_deadline: Optional[float] = None
        self._handshake = asyncio.Event()    # established or finished
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._timer_needed = asyncio.Event()
        self._ticker = asyncio.ensure_future(self._tick_loop())

    ###########################################
    # Connection interface                    #
    ###########################################

    @property
    def remote_address(self) -> Address:
        return self._remote

    @property
    def local_address(self) -> Address:
        return self.endpoint.local_address

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self._finished

    async def wait_established(self) -> None:
        await self._handshake.wait()
        if self.error is not None:
            raise self.error
        if not self.established:
            raise ConnectionClosedError(f"connection to {self._remote} closed during handshake")

    async def _read(self, size: int) -> bytes:
        while True:
            if self.error is not None:
                raise self.error
            if self._closed:
                raise ConnectionClosedError(f"connection to {self._remote} is closed")
            if self.inbound_stream.bytes_buffered():
                break
            if self.inbound_stream.is_closed() or self._finished:
                return b''
            self._readable.clear()
            await self._readable.wait()

        data = self.inbound_stream.pop(size)
        # the peer may be stalled on a window we advertised as (nearly) full
        if self.advertised_window < self.config.payload_size and not self._finished:
            self._transmit(self.sender.make_empty_message())
        return data

    async def _write(self, data: bytes) -> int:
        view = memoryview(data)
        total = len(view)
        offset = 0
        while offset < total:
            if self.error is not None:
                raise self.error
            if self._closed or self._finished:
                raise ConnectionClosedError(f"connection to {self._remote} is closed")
            capacity = self.outbound_stream.available_capacity()
            if capacity == 0:
                self._writable.clear()
                await self._writable.wait()
                continue
            n = min(capacity, total - offset)
            self.outbound_stream.push(bytes(view[offset:offset + n]))
            offset += n
            self.push()
        return total

    async def close(self) -> None:
        """Queue a FIN behind any unsent data and return

        The session keeps delivering in the background until the FIN is
        acknowledged and the peer has finished too, or until it makes no
        progress for `linger_timeout` ms.
        """
        if self._closed:
            return
        self._closed = True
        self._readable.set()
        self._writable.set()
        if self._finished:
            return
        self.outbound_stream.close()
        self.push()
        self._extend_linger()
        self._timer_needed.set()
        self._check_finished()

    ###########################################
    # Network event handlers                  #
    ###########################################

    def receive(self, message: Message) -> None:
        """Called by the endpoint for every datagram from the peer"""
        if self._finished:
            return
        sender_message = message.sender_message
        if sender_message.RST or message.receiver_message.RST:
            self.abort(ConnectionResetError(f"connection reset by {self._remote}"))
            return

        # if the segment occupies sequence numbers, make sure to reply
        self.need_send |= sender_message.sequence_length() > 0
        # keep-alive style segments one below our ackno also get a reply
        our_ackno = self.receiver.send().ackno
        self.need_send |= our_ackno is not None and sender_message.seqno + 1 == our_ackno

        acked_before = self.sender.ack_seqno
        pushed_before = self.inbound_stream.bytes_pushed()
        self.receiver.receive(sender_message)
        self.sender.receive(message.receiver_message, self._transmit,
                            pure_ack=sender_message.sequence_length() == 0)
        if self._linger_deadline is not None and (
                self.sender.ack_seqno > acked_before or self.inbound_stream.bytes_pushed() > pushed_before):
            self._extend_linger()

        self.push()
        if self.need_send:
            self._transmit(self.sender.make_empty_message())

        if self.inbound_stream.bytes_buffered() or self.inbound_stream.is_closed():
            self._readable.set()
        if not self.established and self.sender.syn_acked and self.receiver.syn_received:
            self.established = True
            self._handshake.set()
            self.logger.debug(f"rudp connection with {self._remote} established")
            if self._on_established is not None:
                self._on_established(self)
        self._check_finished()

    def push(self) -> None:
        self.sender.push(self._transmit)
        if self.sender.has_outstanding():
            self._timer_needed.set()
        if self.outbound_stream.available_capacity() > 0:
            self._writable.set()

    def abort(self, exc: BaseException) -> None:
        """Tear the session down with an error visible to readers and writers"""
        if self._finished:
            return
        self.logger.debug(f"rudp connection with {self._remote} aborted: {exc}")
        self.error = exc
        self._finish()

    ###########################################
    # Internal methods                        #
    ###########################################

    def _transmit(self, sender_message: SenderMessage) -> None:
        receiver_message = self.receiver.send()
        self.advertised_window = receiver_message.window_size
        self.endpoint.sendto(serialize_message(Message(sender_message, receiver_message)), self._remote)
        self.need_send = False

    def _extend_linger(self) -> None:
        loop = asyncio.get_running_loop()
        self._linger_deadline = loop.time() + self.config.linger_timeout / 1000

    def _check_finished(self) -> None:
        if self._closed and self.sender.fin_acked and self.inbound_stream.is_closed():
            self._finish()

    def _finish(self, reset: bool = False) -> None:
        if self._finished:
            return
        self._finished = True
        if reset:
            message = self.sender.make_empty_message()
            message.RST = True
            self._transmit(message)
        self._handshake.set()
        self._readable.set()
        self._writable.set()
        if self._ticker is not asyncio.current_task():
            self._ticker.cancel()
        self.endpoint.detach(self)

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.tick_interval / 1000
        last = loop.time()
        while not self._finished:
            if not self.sender.has_outstanding() and self._linger_deadline is None:
                self._timer_needed.clear()
                await self._timer_needed.wait()
                last = loop.time()
                continue

            await asyncio.sleep(interval)
            now = loop.time()
            self.sender.tick((now - last) * 1000, self._transmit)
            last = now

            if self.sender.retrans_count > self.config.max_retx_attempts:
                self.abort(ConnectionAbortedError(f"no response from {self._remote}"))
                return
            if self._linger_deadline is not None and now >= self._linger_deadline:
                self.logger.debug(f"rudp connection with {self._remote} linger expired")
                self._finish(reset=True)
                return
