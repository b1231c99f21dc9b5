# File transfer over any provider.
#
# Request:  4 byte big-endian name length, then the UTF-8 file name
# Response: 8 byte big-endian signed file size (-1: no such file), then the bytes

import asyncio
import logging
import struct
import sys
import time
from pathlib import Path
from typing import List, Optional, Union

from netbench import transport
from netbench.cli import UsageParser
from netbench.connection import Connection, Listener
from netbench.errors import ConfigError, NetbenchError, ProviderError
from netbench.log import setup_logger
from netbench.server import ConnectionServer
from netbench.termination import Termination, install_signal_handlers, remove_signal_handlers
from netbench.transport import TransportKind

NAME_LENGTH = struct.Struct('!I')
FILE_SIZE = struct.Struct('!q')
MAX_NAME_LENGTH = 4096
FILE_BLOCK_SIZE = 65536
NO_SUCH_FILE = -1

logger = logging.getLogger(__name__)


def resolve_served_path(root: Union[str, Path], name: str) -> Optional[Path]:
    """Map a requested name onto a regular file below root, or None"""
    base = Path(root).resolve()
    path = (base / name).resolve()
    if base not in path.parents or not path.is_file():
        return None
    return path


async def send_file(connection: Connection, root: Union[str, Path],
                    log: Optional[logging.Logger] = None) -> int:
    """Answer one request on `connection`

    Returns:
        Bytes of file content sent, -1 if the file was not found
    """
    log = log or logger
    (length,) = NAME_LENGTH.unpack(await connection.read_exactly(NAME_LENGTH.size))
    if length > MAX_NAME_LENGTH:
        raise ValueError(f"file name of {length} bytes is too long")
    name = (await connection.read_exactly(length)).decode('utf-8')

    path = resolve_served_path(root, name)
    if path is None:
        log.debug(f"no such file {name!r}")
        await connection.write(FILE_SIZE.pack(NO_SUCH_FILE))
        return NO_SUCH_FILE

    size = path.stat().st_size
    await connection.write(FILE_SIZE.pack(size))
    sent = 0
    with open(path, 'rb') as f:
        while sent < size:
            block = f.read(min(FILE_BLOCK_SIZE, size - sent))
            if not block:
                break
            await connection.write(block)
            sent += len(block)
    log.debug(f"sent {name!r}, {sent} bytes")
    return sent


class FileServer(ConnectionServer):
    """Answer one file request per accepted connection"""

    def __init__(self, listener: Listener, root: Union[str, Path], termination: Termination,
                 logger: Optional[logging.Logger] = None):
        super().__init__(listener, termination, logger or logging.getLogger(__name__))
        self.root = root

    async def handle(self, connection: Connection) -> None:
        start = time.monotonic()
        sent = await send_file(connection, self.root, self.logger)
        if sent > 0:
            print(f"speed = {mbits_per_sec(sent, time.monotonic() - start):.2f} Mbits/sec", flush=True)


async def serve_files(listener: Listener, root: Union[str, Path], termination: Termination,
                      logger: Optional[logging.Logger] = None) -> None:
    """Serve files below root, one task per connection, until termination"""
    await FileServer(listener, root, termination, logger).serve()


async def fetch_file(connection: Connection, remote_name: str, local_path: Union[str, Path]) -> int:
    """Request `remote_name` and store it at `local_path`

    Returns:
        Size of the received file in bytes

    Raises:
        FileNotFoundError: The server has no such file
        ShortReadError: The connection ended before the whole file arrived
    """
    name = remote_name.encode('utf-8')
    await connection.write(NAME_LENGTH.pack(len(name)) + name)
    (size,) = FILE_SIZE.unpack(await connection.read_exactly(FILE_SIZE.size))
    if size == NO_SUCH_FILE:
        raise FileNotFoundError(f"no such file {remote_name} on the server")

    received = 0
    with open(local_path, 'wb') as f:
        while received < size:
            block = await connection.read_exactly(min(FILE_BLOCK_SIZE, size - received))
            f.write(block)
            received += len(block)
    return received


def mbits_per_sec(nbytes: int, elapsed: float) -> float:
    return nbytes * 8 / max(elapsed, 1e-6) / 1e6


def _add_common_arguments(parser: UsageParser) -> None:
    parser.add_argument('-udt', action='store_true', help='Use the reliable-datagram transport')
    parser.add_argument('-v', dest='verbose', action='store_true', help='Verbose debug output')


def _kind(args) -> TransportKind:
    return TransportKind.RELIABLE_DATAGRAM if args.udt else TransportKind.STREAM


async def _serve(kind: TransportKind, address: str, root: str, log: logging.Logger) -> None:
    listener = await transport.listen(kind, address, log)
    print(f"server is ready at {transport.format_address(listener.address)}", flush=True)
    termination = Termination()
    signals = install_signal_handlers(termination, log=log)
    try:
        await serve_files(listener, root, termination, log)
    finally:
        remove_signal_handlers(signals)


async def _fetch(kind: TransportKind, address: str, remote: str, local: str, log: logging.Logger) -> None:
    connection = await transport.dial(kind, address, log)
    start = time.monotonic()
    try:
        size = await fetch_file(connection, remote, local)
    finally:
        await connection.close()
    print(f"received {size} bytes")
    print(f"speed = {mbits_per_sec(size, time.monotonic() - start):.2f} Mbits/sec")


def sendfile_main(argv: Optional[List[str]] = None) -> int:
    parser = UsageParser(prog='netbench-sendfile', allow_abbrev=False,
                         description='Serve files from a directory')
    _add_common_arguments(parser)
    parser.add_argument('address', help='[host]:port to listen on')
    parser.add_argument('root', nargs='?', default='.', help='Directory to serve (default: .)')
    try:
        args = parser.parse_args(argv)
    except ConfigError as e:
        parser.print_usage(sys.stderr)
        print(f"netbench-sendfile: error: {e}", file=sys.stderr)
        return 1

    log = setup_logger(args.verbose)
    try:
        asyncio.run(_serve(_kind(args), args.address, args.root, log))
    except ProviderError as e:
        print(f"sendfile error: {e}", file=sys.stderr)
        return 1
    return 0


def recvfile_main(argv: Optional[List[str]] = None) -> int:
    parser = UsageParser(prog='netbench-recvfile', allow_abbrev=False,
                         description='Fetch one file from a netbench-sendfile server')
    _add_common_arguments(parser)
    parser.add_argument('address', help='[host]:port of the server')
    parser.add_argument('remote', help='File name on the server')
    parser.add_argument('local', help='Where to store the file')
    try:
        args = parser.parse_args(argv)
    except ConfigError as e:
        parser.print_usage(sys.stderr)
        print(f"netbench-recvfile: error: {e}", file=sys.stderr)
        return 1

    log = setup_logger(args.verbose)
    try:
        asyncio.run(_fetch(_kind(args), args.address, args.remote, args.local, log))
    except FileNotFoundError as e:
        print(e, file=sys.stderr)
        return 1
    except (ProviderError, OSError, NetbenchError) as e:
        print(f"recvfile error: {e}", file=sys.stderr)
        return 1
    return 0
