# Provider selection: maps a TransportKind onto the stream (TCP) or the
# reliable-datagram (rudp) implementation and normalizes their failures.

import asyncio
import logging
from enum import Enum
from typing import Optional

from netbench.rudp import endpoint as rudp_provider
from netbench.tcp import connection as tcp_provider
from netbench.connection import Address, Connection, Listener
from netbench.errors import ProviderError

logger = logging.getLogger(__name__)


class TransportKind(Enum):
    STREAM = 'tcp'
    RELIABLE_DATAGRAM = 'rudp'

    @classmethod
    def parse(cls, name: Optional[str], log: Optional[logging.Logger] = None) -> 'TransportKind':
        """Resolve a user supplied transport name

        "udt" is accepted as an alias for the reliable-datagram provider.
        Empty names select STREAM; unknown names also select STREAM, with a
        warning.
        """
        if not name:
            return cls.STREAM
        key = name.strip().lower()
        if key == 'tcp':
            return cls.STREAM
        if key in ('rudp', 'udt'):
            return cls.RELIABLE_DATAGRAM
        (log or logger).warning(f"unknown transport {name!r}, using {cls.STREAM.value}")
        return cls.STREAM


def parse_address(address: str) -> Address:
    """Split "[host]:port" into (host, port)

    IPv6 hosts are written in brackets, e.g. "[::1]:9000". The host may be
    empty.

    Raises:
        ValueError: The port is missing or not in 0..65535
    """
    host, sep, port = address.rpartition(':')
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    elif ':' in host:
        raise ValueError(f"IPv6 host must be bracketed in address {address!r}")
    try:
        number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None
    if not 0 <= number <= 65535:
        raise ValueError(f"port out of range in address {address!r}")
    return host, number


def format_address(address: Address) -> str:
    host, port = address
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


async def dial(kind: TransportKind, address: str, logger: Optional[logging.Logger] = None) -> Connection:
    """Open a connection to a listener of the same kind

    Raises:
        ProviderError: The address is malformed, the peer is unreachable or
            the handshake timed out
    """
    try:
        remote = parse_address(address)
        if kind is TransportKind.RELIABLE_DATAGRAM:
            return await rudp_provider.dial(remote, log=logger)
        return await tcp_provider.dial(remote, log=logger)
    except (OSError, ValueError, asyncio.TimeoutError) as e:
        raise ProviderError(kind.value, 'dial', address, e) from e


async def listen(kind: TransportKind, address: str, logger: Optional[logging.Logger] = None) -> Listener:
    """Bind a listener

    Raises:
        ProviderError: The address is malformed or cannot be bound
    """
    try:
        local = parse_address(address)
        if kind is TransportKind.RELIABLE_DATAGRAM:
            return await rudp_provider.listen(local, log=logger)
        return await tcp_provider.listen(local, log=logger)
    except (OSError, ValueError) as e:
        raise ProviderError(kind.value, 'listen', address, e) from e
