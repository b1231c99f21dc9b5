from dataclasses import dataclass

from netbench.benchmark import DEFAULT_BLOCK_SIZE
from netbench.stress import DEFAULT_CHUNK_SIZE, DEFAULT_CONNECTIONS, DEFAULT_ITERATIONS
from netbench.transport import TransportKind


@dataclass(frozen=True)
class RunConfig:
    """Everything one netbench invocation needs, fixed once parsed"""
    listen: bool = False
    transport: TransportKind = TransportKind.STREAM
    block_size: int = DEFAULT_BLOCK_SIZE
    rudp_address: str = ''
    tcp_address: str = ''
    remote_address: str = ''
    verbose: bool = False
    stress: bool = False
    stress_address: str = ''
    connections: int = DEFAULT_CONNECTIONS
    iterations: int = DEFAULT_ITERATIONS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    seed: int = 0
