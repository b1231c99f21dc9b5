# Wrap32 is a 32-bit sequence number on the wire, relative to an initial
# sequence number, standing in for a 64-bit absolute stream position.
class Wrap32:
    __slots__ = ('raw_value',)

    def __init__(self, raw_value: int):
        self.raw_value = raw_value & 0xFFFFFFFF

    @staticmethod
    def wrap(n: int, zero_point: 'Wrap32') -> 'Wrap32':
        """Construct the Wrap32 for absolute sequence number n"""
        return Wrap32(zero_point.raw_value + n)

    def unwrap(self, zero_point: 'Wrap32', checkpoint: int) -> int:
        """
        Returns the absolute sequence number that wraps to this value and is
        closest to checkpoint.

        Args:
            zero_point: The initial sequence number
            checkpoint: A recent absolute sequence number

        Returns:
            Non-negative absolute sequence number
        """
        offset = (self.raw_value - zero_point.raw_value) & 0xFFFFFFFF
        candidate = (checkpoint & ~0xFFFFFFFF) | offset
        # pick the neighbour closest to the checkpoint
        if candidate + (1 << 31) < checkpoint:
            candidate += 1 << 32
        elif candidate > checkpoint + (1 << 31) and candidate >= (1 << 32):
            candidate -= 1 << 32
        return candidate

    def __add__(self, n: int) -> 'Wrap32':
        return Wrap32(self.raw_value + n)

    def __eq__(self, other):
        if not isinstance(other, Wrap32):
            return NotImplemented
        return self.raw_value == other.raw_value

    def __hash__(self):
        return hash(self.raw_value)

    def __repr__(self):
        return f"Wrap32({self.raw_value})"
