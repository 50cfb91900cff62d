"""
EVM operand stack.

A LIFO stack of 256-bit words with a hard depth limit of 1024. Values pushed
outside the uint256 range wrap modulo 2**256.
"""

from __future__ import annotations

from typing import Iterable, List

from evmsim.core.constants import MAX_STACK_DEPTH, UINT256_MAX
from evmsim.core.primitives import sign_extend, to_signed, to_unsigned
from evmsim.core.vm.exceptions import StackOverflowError, StackUnderflowError

__all__ = [
    "EVMStack",
    "MAX_STACK_DEPTH",
    "UINT256_MAX",
    "sign_extend",
    "to_signed",
    "to_unsigned",
]


class EVMStack:
    """Operand stack of one call frame."""

    __slots__ = ("_items", "max_depth")

    def __init__(self, max_depth: int = MAX_STACK_DEPTH) -> None:
        self._items: List[int] = []
        self.max_depth = max_depth

    def __len__(self) -> int:
        return len(self._items)

    def push(self, value: int) -> None:
        if len(self._items) >= self.max_depth:
            raise StackOverflowError(f"Stack overflow: depth limit {self.max_depth} reached")
        self._items.append(value & UINT256_MAX)

    def pop(self) -> int:
        if not self._items:
            raise StackUnderflowError("Stack underflow: pop from empty stack")
        return self._items.pop()

    def peek(self, index: int = 0) -> int:
        """Item ``index`` positions below the top (0 is the top)."""
        if index >= len(self._items):
            raise StackUnderflowError(f"Stack underflow: cannot peek at depth {index}")
        return self._items[-1 - index]

    def dup(self, n: int) -> None:
        """DUPn: push a copy of the n-th item (1-based)."""
        if n > len(self._items):
            raise StackUnderflowError(f"Stack underflow: DUP{n} needs {n} items")
        self.push(self._items[-n])

    def swap(self, n: int) -> None:
        """SWAPn: exchange the top with the (n+1)-th item."""
        if n >= len(self._items):
            raise StackUnderflowError(f"Stack underflow: SWAP{n} needs {n + 1} items")
        items = self._items
        items[-1], items[-1 - n] = items[-1 - n], items[-1]

    def push_n(self, values: Iterable[int]) -> None:
        values = list(values)
        if len(self._items) + len(values) > self.max_depth:
            raise StackOverflowError(f"Stack overflow: cannot push {len(values)} items")
        for value in values:
            self._items.append(value & UINT256_MAX)

    def pop_n(self, n: int) -> List[int]:
        """Pop ``n`` items, topmost first."""
        if n > len(self._items):
            raise StackUnderflowError(f"Stack underflow: need {n} items, have {len(self._items)}")
        popped = self._items[-n:] if n else []
        del self._items[len(self._items) - n:]
        popped.reverse()
        return popped

    def to_list(self) -> List[int]:
        return list(self._items)
