from collections import deque
from typing import Callable, Deque

from netbench.rudp.config import DUPLICATE_ACK_THRESHOLD, RUDPConfig
from netbench.rudp.message import ReceiverMessage, SenderMessage
from netbench.rudp.wrapping_integers import Wrap32
from netbench.util.byte_stream import ByteStream

TransmitFunc = Callable[[SenderMessage], None]


class RUDPSender:
    def __init__(self, input_stream: ByteStream, isn: Wrap32, config: RUDPConfig):
        self.input_stream = input_stream
        self.isn = isn
        self.config = config
        self.initial_RTO = config.rto
        self.RTO = config.rto
        self.retrans_count = 0          # consecutive retransmissions
        self.total_retransmissions = 0
        self.next_seqno = 0             # absolute
        self.ack_seqno = 0              # absolute, everything below is acknowledged
        self.window_size = 1            # peer's advertised window, 1 until the first ACK
        self.last_sent_time = 0         # ms since the timer was (re)started
        self.outstanding_data: Deque[SenderMessage] = deque()
        self.syn_sent = False
        self.fin_sent = False
        self.duplicate_acks = 0

    def sequence_numbers_in_flight(self) -> int:
        return self.next_seqno - self.ack_seqno

    def has_outstanding(self) -> bool:
        return bool(self.outstanding_data)

    @property
    def syn_acked(self) -> bool:
        return self.syn_sent and self.ack_seqno > 0

    @property
    def fin_acked(self) -> bool:
        return self.fin_sent and not self.outstanding_data

    def receive(self, message: ReceiverMessage, transmit: TransmitFunc, pure_ack: bool = True) -> None:
        """Process the acknowledgment half of an incoming message

        Args:
            message: Peer's receiver state
            transmit: Used for fast retransmit
            pure_ack: The segment carried no sequence numbers of its own,
                so an unchanged ackno counts as a duplicate
        """
        if message.RST:
            self.input_stream.set_error()
            return

        previous_window = self.window_size
        if message.ackno is None:
            self.window_size = message.window_size
            return

        ack_seqno = message.ackno.unwrap(self.isn, self.next_seqno)
        # ignore acknowledgments for data we never sent
        if ack_seqno > self.next_seqno:
            return
        self.window_size = message.window_size

        if ack_seqno > self.ack_seqno:
            self.ack_seqno = ack_seqno
            # pop segments that have been fully acknowledged
            while self.outstanding_data:
                segment = self.outstanding_data[0]
                end = segment.seqno.unwrap(self.isn, self.ack_seqno) + segment.sequence_length()
                if end > self.ack_seqno:
                    break
                self.outstanding_data.popleft()
            self.reset_timer()
            self.duplicate_acks = 0
            return

        if ack_seqno == self.ack_seqno and pure_ack and self.outstanding_data \
                and message.window_size == previous_window:
            self.duplicate_acks += 1
            if self.duplicate_acks == DUPLICATE_ACK_THRESHOLD:
                transmit(self.outstanding_data[0])
                self.total_retransmissions += 1
                self.last_sent_time = 0

    def push(self, transmit: TransmitFunc) -> None:
        # a zero window is probed with a single byte
        window = min(self.window_size or 1, self.config.window_size)
        while self.sequence_numbers_in_flight() < window:
            msg = SenderMessage(seqno=self.isn + self.next_seqno)

            if not self.syn_sent:
                msg.SYN = True
                self.syn_sent = True

            room = window - self.sequence_numbers_in_flight() - msg.SYN
            payload_size = min(room, self.config.payload_size, self.input_stream.bytes_buffered())
            if payload_size > 0:
                msg.payload = self.input_stream.pop(payload_size)

            if not self.fin_sent and self.input_stream.is_finished() and room > payload_size:
                msg.FIN = True
                self.fin_sent = True

            # avoid sending an empty message
            if msg.sequence_length() == 0:
                break

            transmit(msg)
            if not self.outstanding_data:
                self.reset_timer()
            self.outstanding_data.append(msg)
            self.next_seqno += msg.sequence_length()

            if msg.FIN:
                break

    def tick(self, ms_since_last_tick: int, transmit: TransmitFunc) -> None:
        if not self.outstanding_data:
            return

        self.last_sent_time += ms_since_last_tick
        if self.last_sent_time < self.RTO:
            return

        transmit(self.outstanding_data[0])
        self.total_retransmissions += 1
        self.last_sent_time = 0
        # a zero window is not congestion, keep probing at the same pace
        if self.window_size > 0:
            self.retrans_count += 1
            self.RTO = min(self.RTO * 2, self.config.max_rto)

    def reset_timer(self) -> None:
        self.last_sent_time = 0
        self.RTO = self.initial_RTO
        self.retrans_count = 0

    def make_empty_message(self) -> SenderMessage:
        msg = SenderMessage(seqno=self.isn + self.next_seqno)
        if self.input_stream.has_error():
            msg.RST = True
        return msg
