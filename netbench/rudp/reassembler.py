from typing import Dict, Optional

from netbench.util.byte_stream import ByteStream


class Reassembler:
    """Puts out-of-order substrings of the inbound stream back in order

    Only bytes that fit in the output stream's free capacity are kept;
    anything beyond is dropped and will be retransmitted by the peer.
    """

    def __init__(self, output: ByteStream):
        self.output = output
        self.pending: Dict[int, bytes] = {}  # first index -> bytes not yet contiguous
        self.eof_index: Optional[int] = None

    @property
    def first_unassembled(self) -> int:
        return self.output.bytes_pushed()

    @property
    def first_unacceptable(self) -> int:
        return self.output.bytes_popped() + self.output.capacity

    def insert(self, first_index: int, data: bytes, is_last: bool) -> None:
        if self.output.is_closed():
            return
        if is_last:
            self.eof_index = first_index + len(data)

        start = max(first_index, self.first_unassembled)
        end = min(first_index + len(data), self.first_unacceptable)
        if start < end:
            chunk = data[start - first_index:end - first_index]
            if start == self.first_unassembled:
                self.output.push(chunk)
                self._push_contiguous()
            elif len(chunk) > len(self.pending.get(start, b'')):
                self.pending[start] = chunk

        # if eof and everything before it arrived, close the output
        if self.eof_index is not None and self.first_unassembled >= self.eof_index:
            self.pending.clear()
            self.output.close()

    def _push_contiguous(self) -> None:
        while self.pending:
            position = self.first_unassembled
            ready = [index for index in self.pending if index <= position]
            if not ready:
                return
            for index in sorted(ready):
                chunk = self.pending.pop(index)
                position = self.first_unassembled
                if index + len(chunk) > position:
                    self.output.push(chunk[position - index:])

    def count_bytes_pending(self) -> int:
        # overlapping substrings are counted once
        total = 0
        covered = self.first_unassembled
        for index in sorted(self.pending):
            end = index + len(self.pending[index])
            if end > covered:
                total += end - max(index, covered)
                covered = end
        return total

    def output_stream(self) -> ByteStream:
        return self.output

    def has_error(self) -> bool:
        return self.output.has_error()

    def set_error(self) -> None:
        self.output.set_error()
