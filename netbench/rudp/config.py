from dataclasses import dataclass
from typing import Optional

MAX_PAYLOAD_SIZE = 1200          # bytes per segment, stays below a 1500 byte MTU
MAX_WINDOW_SIZE = 65536          # bytes in flight, whatever the peer advertises
SEND_BUFFER_SIZE = 262144
RECEIVE_BUFFER_SIZE = 262144
MAX_ADVERTISED_WINDOW = 2**32 - 1
INITIAL_RTO = 200                # ms
MAX_RTO = 4000                   # ms
MAX_RETX_ATTEMPTS = 8
DUPLICATE_ACK_THRESHOLD = 3
TICK_INTERVAL = 10               # ms
CONNECT_TIMEOUT = 5000           # ms
LINGER_TIMEOUT = 5000            # ms without progress after close
SOCKET_BUFFER_SIZE = 4 * 1024 * 1024


@dataclass
class RUDPConfig:
    payload_size: int = MAX_PAYLOAD_SIZE
    window_size: int = MAX_WINDOW_SIZE
    send_buffer_size: int = SEND_BUFFER_SIZE
    receive_buffer_size: int = RECEIVE_BUFFER_SIZE
    rto: int = INITIAL_RTO
    max_rto: int = MAX_RTO
    max_retx_attempts: int = MAX_RETX_ATTEMPTS
    tick_interval: int = TICK_INTERVAL
    connect_timeout: int = CONNECT_TIMEOUT
    linger_timeout: int = LINGER_TIMEOUT
    socket_buffer_size: int = SOCKET_BUFFER_SIZE
    isn: Optional[int] = None    # random when None
