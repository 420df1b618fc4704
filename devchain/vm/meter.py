"""
devchain.vm.meter — step and memory budgets for one transaction.

The ResourceMeter tracks two budgets:

- steps:   one per executed instruction, across all nested invocations
- memory:  byte footprint of every live operand stack plus staged storage writes

Exceeding either raises ``ResourceExhausted``. Steps are charged *before* an
instruction runs, so exhaustion happens at a deterministic point. Memory is
checked after each instruction against the current footprint; the peak is
kept for receipts and estimates.
"""

from __future__ import annotations

from typing import Any, List

from devchain.errors import ResourceExhausted


def value_size(v: Any) -> int:
    """Deterministic byte footprint of a VM value."""
    if isinstance(v, (bytes, bytearray)):
        return 8 + len(v)
    if isinstance(v, str):
        return 8 + len(v.encode("utf-8"))
    if isinstance(v, int):
        return 8 + max(0, (v.bit_length() + 7) // 8 - 8)
    return 8


class ResourceMeter:
    """
    Parameters
    ----------
    steps : int
        Step budget for the whole transaction.
    memory_bytes : int
        Memory budget for the whole transaction.
    """

    __slots__ = ("_step_limit", "_memory_limit", "_steps", "_frames", "_pending", "_peak")

    def __init__(self, steps: int, memory_bytes: int) -> None:
        if steps < 0 or memory_bytes < 0:
            raise ValueError("budgets must be non-negative")
        self._step_limit = int(steps)
        self._memory_limit = int(memory_bytes)
        self._steps = 0
        self._frames: List[int] = []
        self._pending = 0
        self._peak = 0

    # --------------------------- properties ---------------------------------

    @property
    def steps_used(self) -> int:
        return self._steps

    @property
    def memory_in_use(self) -> int:
        return sum(self._frames) + self._pending

    @property
    def memory_peak(self) -> int:
        return self._peak

    # --------------------------- operations ---------------------------------

    def step(self, n: int = 1) -> None:
        if self._steps + n > self._step_limit:
            raise ResourceExhausted("steps", budget=self._step_limit, used=self._steps + n)
        self._steps += n

    def push_frame(self) -> int:
        self._frames.append(0)
        return len(self._frames) - 1

    def pop_frame(self) -> None:
        self._frames.pop()

    def set_frame(self, frame: int, nbytes: int) -> None:
        self._frames[frame] = nbytes
        self._check()

    def add_pending(self, nbytes: int) -> None:
        """Staged storage write of ``nbytes`` (key + value)."""
        self._pending += nbytes
        self._check()

    def _check(self) -> None:
        used = self.memory_in_use
        if used > self._peak:
            self._peak = used
        if used > self._memory_limit:
            raise ResourceExhausted("memory", budget=self._memory_limit, used=used)


__all__ = ["ResourceMeter", "value_size"]
