import asyncio
import logging
from typing import Optional, Set

from netbench.connection import Connection, Listener
from netbench.errors import ConnectionClosedError, NetbenchError
from netbench.termination import Termination


class ConnectionServer:
    """Accept connections and run `handle` on each one in its own task

    Runs until the listener is closed or `termination` fires; either way
    every accepted connection is closed exactly once. Subclasses implement
    `handle`.
    """

    def __init__(self, listener: Listener, termination: Termination,
                 logger: Optional[logging.Logger] = None):
        self.listener = listener
        self.termination = termination
        self.logger = logger or logging.getLogger(__name__)
        self.connections = 0
        self._tasks: Set[asyncio.Task] = set()

    async def handle(self, connection: Connection) -> None:
        raise NotImplementedError

    async def serve(self) -> None:
        accepting = asyncio.ensure_future(self._accept_loop())
        stopping = asyncio.ensure_future(self.termination.wait())
        try:
            await asyncio.wait((accepting, stopping), return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopping.cancel()
            accepting.cancel()
            await self.listener.close()
            tasks = [accepting, stopping, *self._tasks]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _accept_loop(self) -> None:
        while True:
            try:
                connection = await self.listener.accept()
            except ConnectionClosedError:
                return
            self.connections += 1
            self.logger.debug(f"accepted connection from {connection.remote_address}")
            task = asyncio.ensure_future(self._run(connection))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, connection: Connection) -> None:
        try:
            await self.handle(connection)
        except (OSError, ValueError, NetbenchError) as e:
            self.logger.debug(f"{connection.remote_address} stopped: {e}")
        finally:
            await connection.close()
