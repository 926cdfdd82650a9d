"""Integer variables shared by the ranks of one communicator.

Each rank owns one slot of a shared window. A rank changes only its own
slot, under the window's exclusive lock, and reads every other slot in the
same step. It also keeps a private copy of its own value, which is what it
counts as its contribution when it combines the slots.
"""

from __future__ import annotations

from consensuslab.world import Communicator


class SharedVariable:
    """A named integer shared across a communicator, one slot per rank.

    ``increment`` adds to this rank's slot and returns the sum over all
    ranks. ``raise_to`` lifts this rank's slot to at least a value and
    returns the largest value over all ranks. ``reset`` sets this rank's
    own value outright but only raises its shared slot, so other ranks
    keep seeing the larger of the old and new values.
    """

    def __init__(self, comm: Communicator, name: str) -> None:
        self._comm = comm
        self._window = comm.window(name)
        self.name = name
        self._value = 0

    def _combine(self, update) -> list[int]:
        values = self._window.exchange(self._comm.rank, update)
        values[self._comm.rank] = self._value
        return values

    def increment(self, amount: int = 1) -> int:
        """Add ``amount`` to this rank's value; return the total over all ranks."""
        self._value += amount
        return sum(self._combine(lambda slot: slot + amount))

    def reset(self, value: int) -> int:
        """Set this rank's value to ``value`` and return it."""
        self._value = value
        self._combine(lambda slot: max(slot, value))
        return self._value

    def raise_to(self, value: int) -> int:
        """Raise this rank's value to at least ``value``; return the largest over all ranks, never below zero."""
        self._value = max(self._value, value)
        return max([0, *self._combine(lambda slot: max(slot, value))])

    def get(self) -> int:
        """This rank's own value."""
        return self._value