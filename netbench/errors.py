import asyncio
from typing import Optional


class NetbenchError(Exception):
    """Base class for every error raised by netbench itself"""


class ConfigError(NetbenchError):
    """Missing or malformed run configuration"""


class ProviderError(NetbenchError):
    """A transport provider failed to dial or listen

    Args:
        kind: Transport kind name, e.g. "tcp" or "rudp"
        op: Operation that failed, "dial" or "listen"
        address: Address string the operation was given
        cause: Underlying exception, if any
    """

    def __init__(self, kind: str, op: str, address: str, cause: Optional[BaseException] = None):
        self.kind = kind
        self.op = op
        self.address = address
        self.cause = cause
        super().__init__(str(self))

    def __str__(self):
        if self.cause is None:
            reason = "failed"
        elif isinstance(self.cause, (TimeoutError, asyncio.TimeoutError)) and not str(self.cause):
            reason = "timed out"
        elif str(self.cause):
            reason = self.cause
        else:
            reason = type(self.cause).__name__
        return f"{self.kind} {self.op} {self.address}: {reason}"


class ConnectionClosedError(NetbenchError, ConnectionError):
    """I/O was attempted on a connection or listener that was closed locally"""


class ShortReadError(NetbenchError, ConnectionError):
    """The stream ended before the requested number of bytes arrived"""

    def __init__(self, expected: int, partial: bytes):
        self.expected = expected
        self.partial = partial
        super().__init__(f"stream ended after {len(partial)} of {expected} bytes")


class ConnectionTimeout(NetbenchError, TimeoutError):
    """A read or write deadline expired"""

    timeout = True


class IntegrityError(NetbenchError):
    """A stress run observed a short write, an I/O failure or corrupted data"""

    def __init__(self, connection: int, iteration: int, message: str, accepted: bool = False):
        # dialing clients and accepted connections are numbered independently
        self.connection = connection
        self.iteration = iteration
        self.accepted = accepted
        side = "accepted connection" if accepted else "connection"
        super().__init__(f"{side} {connection} iteration {iteration}: {message}")


class RunInterrupted(NetbenchError):
    """A termination signal arrived before a run could finish"""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(f"interrupted by {reason}" if reason else "interrupted")
