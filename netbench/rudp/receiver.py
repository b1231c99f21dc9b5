from typing import Optional

from netbench.rudp.config import MAX_ADVERTISED_WINDOW
from netbench.rudp.message import ReceiverMessage, SenderMessage
from netbench.rudp.reassembler import Reassembler
from netbench.rudp.wrapping_integers import Wrap32


class RUDPReceiver:
    def __init__(self, reassembler: Reassembler):
        self.reassembler = reassembler
        self.isn: Optional[Wrap32] = None

    @property
    def syn_received(self) -> bool:
        return self.isn is not None

    def receive(self, message: SenderMessage) -> None:
        if message.RST:
            self.reassembler.set_error()
            return

        if message.SYN and self.isn is None:
            self.isn = message.seqno

        if self.isn is None:
            return

        output = self.reassembler.output
        checkpoint = output.bytes_pushed() + 1
        absolute_seqno = message.seqno.unwrap(self.isn, checkpoint)
        # a non-SYN segment can never carry the ISN itself
        if absolute_seqno == 0 and not message.SYN:
            return
        stream_index = absolute_seqno - 1 + message.SYN

        self.reassembler.insert(stream_index, message.payload, message.FIN)

    def send(self) -> ReceiverMessage:
        output = self.reassembler.output
        msg = ReceiverMessage()

        if self.isn is not None:
            # SYN and FIN each take one sequence number
            absolute_ackno = output.bytes_pushed() + 1 + output.is_closed()
            msg.ackno = Wrap32.wrap(absolute_ackno, self.isn)

        msg.window_size = min(output.available_capacity(), MAX_ADVERTISED_WINDOW)
        msg.RST = self.reassembler.has_error()
        return msg
