"""
EVM linear memory.

Byte-addressed, zero-initialised and grown in 32-byte words. Growth is paid
for by the caller through ``expansion_cost`` before the access happens.
"""

from __future__ import annotations

from evmsim.core.constants import (
    GAS_MEMORY_QUADRATIC_DIVISOR,
    GAS_MEMORY_WORD,
    MAX_MEMORY_SIZE,
    WORD_SIZE,
)
from evmsim.core.primitives import ceil32
from evmsim.core.vm.exceptions import MemoryLimitError

__all__ = ["EVMMemory", "WORD_SIZE", "memory_gas_cost"]


def memory_gas_cost(size_in_bytes: int) -> int:
    """Total gas for a memory of ``size_in_bytes``: 3·w + w²/512."""
    words = ceil32(size_in_bytes) // WORD_SIZE
    return GAS_MEMORY_WORD * words + (words * words) // GAS_MEMORY_QUADRATIC_DIVISOR


class EVMMemory:
    """Linear memory of one call frame."""

    __slots__ = ("_data", "max_size")

    def __init__(self, max_size: int = MAX_MEMORY_SIZE) -> None:
        self._data = bytearray()
        self.max_size = max_size

    @property
    def size(self) -> int:
        return len(self._data)

    def expansion_cost(self, offset: int, size: int) -> int:
        """Gas to grow memory so that [offset, offset + size) is addressable."""
        if size == 0:
            return 0
        end = offset + size
        if end <= len(self._data):
            return 0
        if end > self.max_size:
            raise MemoryLimitError(
                f"Memory access out of bounds: {end} bytes exceeds limit {self.max_size}"
            )
        return memory_gas_cost(end) - memory_gas_cost(len(self._data))

    def expand(self, offset: int, size: int) -> None:
        """Grow memory (zero-filled, word aligned) to cover [offset, offset + size)."""
        if size == 0:
            return
        end = offset + size
        if end > self.max_size:
            raise MemoryLimitError(
                f"Memory access out of bounds: {end} bytes exceeds limit {self.max_size}"
            )
        new_size = ceil32(end)
        if new_size > len(self._data):
            self._data.extend(bytes(new_size - len(self._data)))

    def store(self, offset: int, value: int) -> None:
        """MSTORE: write a big-endian 32-byte word."""
        self.expand(offset, WORD_SIZE)
        self._data[offset:offset + WORD_SIZE] = value.to_bytes(WORD_SIZE, "big")

    def load(self, offset: int) -> int:
        """MLOAD: read a big-endian 32-byte word."""
        self.expand(offset, WORD_SIZE)
        return int.from_bytes(self._data[offset:offset + WORD_SIZE], "big")

    def store_byte(self, offset: int, value: int) -> None:
        """MSTORE8: write the low byte of ``value``."""
        self.expand(offset, 1)
        self._data[offset] = value & 0xFF

    def store_range(self, offset: int, data: bytes) -> None:
        if not data:
            return
        self.expand(offset, len(data))
        self._data[offset:offset + len(data)] = data

    def load_range(self, offset: int, size: int) -> bytes:
        """Read ``size`` bytes, expanding memory (zero-filled) as needed."""
        if size == 0:
            return b""
        self.expand(offset, size)
        return bytes(self._data[offset:offset + size])

    def copy(self, dest: int, src: int, size: int) -> None:
        """MCOPY: overlapping regions behave as if copied through a buffer."""
        if size == 0:
            return
        self.expand(max(dest, src), size)
        self._data[dest:dest + size] = bytes(self._data[src:src + size])
