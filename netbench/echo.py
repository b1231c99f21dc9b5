import logging
from typing import Optional

from netbench.connection import Connection, Listener
from netbench.server import ConnectionServer
from netbench.termination import Termination


class EchoServer(ConnectionServer):
    """Write back everything each accepted connection sends"""

    def __init__(self, listener: Listener, block_size: int, termination: Termination,
                 logger: Optional[logging.Logger] = None):
        super().__init__(listener, termination, logger or logging.getLogger(__name__))
        self.block_size = block_size

    async def handle(self, connection: Connection) -> None:
        while True:
            data = await connection.read(self.block_size)
            if not data:
                self.logger.debug(f"{connection.remote_address} finished sending")
                return
            await connection.write(data)
            self.logger.debug(f"Copied back {len(data)} bytes")
