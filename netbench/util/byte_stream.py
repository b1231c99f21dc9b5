# ByteStream is a bounded buffer between the transport and the application.
# The writer pushes and closes; the reader peeks and pops.
class ByteStream:
    def __init__(self, capacity: int):
        self.buffer = bytearray()
        self.capacity = capacity
        self.closed = False
        self.error = False
        self._bytes_pushed = 0
        self._bytes_popped = 0

    # Interfaces for writer
    # push data to stream; it must fit in the available capacity
    def push(self, data: bytes) -> int:
        if self.is_closed():
            raise ValueError("Stream is closed")
        if len(data) > self.available_capacity():
            raise ValueError("Not enough capacity")
        self.buffer += data
        self._bytes_pushed += len(data)
        return len(data)

    # signal that nothing more will be written to the stream
    def close(self) -> None:
        self.closed = True

    def is_closed(self) -> bool:
        return self.closed

    def set_error(self) -> None:
        self.error = True

    def has_error(self) -> bool:
        return self.error

    def available_capacity(self) -> int:
        return self.capacity - len(self.buffer)

    def bytes_pushed(self) -> int:
        return self._bytes_pushed

    # Interfaces for reader
    def peek(self, n: int) -> bytes:
        return bytes(self.buffer[:n])

    def pop(self, n: int) -> bytes:
        n = min(n, len(self.buffer))
        result = bytes(self.buffer[:n])
        del self.buffer[:n]
        self._bytes_popped += n
        return result

    # closed and fully popped
    def is_finished(self) -> bool:
        return self.is_closed() and self._bytes_popped == self._bytes_pushed

    def bytes_buffered(self) -> int:
        return len(self.buffer)

    def bytes_popped(self) -> int:
        return self._bytes_popped
