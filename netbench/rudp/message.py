import struct
from dataclasses import dataclass
from typing import Optional

from netbench.rudp.wrapping_integers import Wrap32

# flags (1 byte) | seqno (4 bytes) | ackno (4 bytes) | window (4 bytes) | payload
HEADER = struct.Struct('!BIII')
HEADER_SIZE = HEADER.size

FLAG_SYN = 0x01
FLAG_FIN = 0x02
FLAG_RST = 0x04
FLAG_ACK = 0x08


@dataclass
class ReceiverMessage:
    ackno: Optional[Wrap32] = None
    window_size: int = 0
    RST: bool = False


@dataclass
class SenderMessage:
    seqno: Optional[Wrap32] = None
    payload: bytes = b''
    SYN: bool = False
    FIN: bool = False
    RST: bool = False

    # How many sequence numbers this segment occupies
    def sequence_length(self) -> int:
        return len(self.payload) + self.SYN + self.FIN


@dataclass
class Message:
    sender_message: SenderMessage
    receiver_message: ReceiverMessage


def serialize_message(message: Message) -> bytes:
    """Serialize a Message into one datagram"""
    sender = message.sender_message
    receiver = message.receiver_message
    flags = 0
    if sender.SYN:
        flags |= FLAG_SYN
    if sender.FIN:
        flags |= FLAG_FIN
    if sender.RST or receiver.RST:
        flags |= FLAG_RST
    if receiver.ackno is not None:
        flags |= FLAG_ACK
    seqno = sender.seqno.raw_value if sender.seqno is not None else 0
    ackno = receiver.ackno.raw_value if receiver.ackno is not None else 0
    return HEADER.pack(flags, seqno, ackno, receiver.window_size) + sender.payload


def parse_message(data: bytes) -> Message:
    """
    Parse one datagram into a Message

    Raises:
        ValueError: The datagram is shorter than the header
    """
    if len(data) < HEADER_SIZE:
        raise ValueError(f"Message too short: {len(data)} bytes")
    flags, seqno, ackno, window_size = HEADER.unpack_from(data)
    rst = bool(flags & FLAG_RST)

    sender_message = SenderMessage(
        seqno=Wrap32(seqno),
        payload=bytes(data[HEADER_SIZE:]),
        SYN=bool(flags & FLAG_SYN),
        FIN=bool(flags & FLAG_FIN),
        RST=rst,
    )
    receiver_message = ReceiverMessage(
        ackno=Wrap32(ackno) if flags & FLAG_ACK else None,
        window_size=window_size,
        RST=rst,
    )
    return Message(sender_message, receiver_message)
