"""In-process message passing between ranks that run as threads.

A :class:`World` holds a fixed number of ranks. Each rank talks to the others
through a :class:`Communicator`, which offers point-to-point messages with
source and tag matching, non-blocking requests, probing, barriers,
communicator splitting and small shared memory windows.
"""

from __future__ import annotations

import copy
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

ANY_SOURCE = -1
ANY_TAG = -1


class MessageTimeout(TimeoutError):
    """Raised when a blocking operation does not complete in time."""


class _Aborted(RuntimeError):
    """Raised in blocked ranks once another rank of the world has failed."""


@dataclass(frozen=True)
class Status:
    """Where a message came from, its tag and how many items it holds."""

    source: int
    tag: int
    count: int = 1


def _count(obj: Any) -> int:
    if isinstance(obj, (list, tuple, bytes, bytearray, str)):
        return len(obj)
    return 1


@dataclass(frozen=True)
class _Envelope:
    source: int
    tag: int
    payload: Any


class _Shared:
    """State common to every communicator of one world."""

    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.aborted = False

    def abort(self) -> None:
        with self.cond:
            self.aborted = True
            self.cond.notify_all()

    def wait(self, predicate: Callable[[], Any], timeout: float | None, what: str) -> Any:
        """Wait, with the condition held, until ``predicate`` gives a value."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            result = predicate()
            if result is not None:
                return result
            if self.aborted:
                raise _Aborted(f"{what} interrupted: another rank failed")
            if deadline is None:
                self.cond.wait()
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise MessageTimeout(f"{what} timed out after {timeout} s")
            self.cond.wait(remaining)


class _Window:
    """A row of integers, one per rank, updated under an exclusive lock."""

    def __init__(self, size: int) -> None:
        self._data = [0] * size
        self._lock = threading.Lock()

    def exchange(self, index: int, update: Callable[[int], int]) -> list[int]:
        """Apply ``update`` to one slot and return a snapshot of all slots."""
        with self._lock:
            self._data[index] = update(self._data[index])
            return list(self._data)

    def snapshot(self) -> list[int]:
        with self._lock:
            return list(self._data)


class _Context:
    """Mailboxes and collective state of one communicator group."""

    def __init__(self, shared: _Shared, size: int) -> None:
        self.shared = shared
        self.size = size
        self.mailboxes: list[deque[_Envelope]] = [deque() for _ in range(size)]
        self.windows: dict[str, _Window] = {}
        self._generation = 0
        self._contributions: dict[int, Any] = {}
        self._results: dict[int, dict[int, Any]] = {}

    def collective(
        self,
        rank: int,
        value: Any,
        combine: Callable[[dict[int, Any]], dict[int, Any]],
        timeout: float | None,
        what: str,
    ) -> Any:
        with self.shared.cond:
            generation = self._generation
            self._contributions[rank] = value
            if len(self._contributions) == self.size:
                self._results[generation] = combine(dict(self._contributions))
                # every member of the previous round has returned by now
                self._results.pop(generation - 1, None)
                self._contributions = {}
                self._generation += 1
                self.shared.cond.notify_all()
            else:
                try:
                    self.shared.wait(
                        lambda: True if self._generation > generation else None,
                        timeout,
                        what,
                    )
                except (MessageTimeout, _Aborted):
                    if self._generation == generation:
                        self._contributions.pop(rank, None)
                    raise
            return self._results[generation][rank]


def _matches(envelope: _Envelope, source: int, tag: int) -> bool:
    return (source == ANY_SOURCE or envelope.source == source) and (
        tag == ANY_TAG or envelope.tag == tag
    )


class Request:
    """A pending or completed non-blocking send or receive."""

    def __init__(self, comm: Communicator, source: int, tag: int) -> None:
        self._comm = comm
        self._source = source
        self._tag = tag
        self.value: Any = None
        self.status: Status | None = None
        self.done = False
        self.cancelled = False

    @classmethod
    def _completed(cls, comm: Communicator, status: Status) -> Request:
        request = cls(comm, status.source, status.tag)
        request.status = status
        request.done = True
        return request

    def _finish(self, envelope: _Envelope) -> None:
        self.value = envelope.payload
        self.status = Status(envelope.source, envelope.tag, _count(envelope.payload))
        self.done = True

    def test(self) -> bool:
        """Complete the request if a matching message is there; report whether it is done."""
        if self.done or self.cancelled:
            return self.done
        with self._comm._shared.cond:
            envelope = self._comm._take(self._source, self._tag)
        if envelope is not None:
            self._finish(envelope)
        return self.done

    def wait(self, timeout: float | None = None) -> Any:
        """Block until the request completes and return the received value."""
        if self.cancelled:
            raise RuntimeError("request was cancelled")
        if not self.done:
            with self._comm._shared.cond:
                envelope = self._comm._shared.wait(
                    lambda: self._comm._take(self._source, self._tag),
                    timeout,
                    "receive",
                )
            self._finish(envelope)
        return self.value

    def cancel(self) -> bool:
        """Cancel a request that has not completed; return whether it was cancelled."""
        if self.done:
            return False
        self.cancelled = True
        return True


class Communicator:
    """One rank's view of a group of ranks."""

    def __init__(self, context: _Context, rank: int) -> None:
        self._ctx = context
        self._shared = context.shared
        self.rank = rank

    @property
    def size(self) -> int:
        return self._ctx.size

    def _check_rank(self, rank: int, what: str, wildcard: bool = False) -> None:
        if wildcard and rank == ANY_SOURCE:
            return
        if not 0 <= rank < self.size:
            raise ValueError(f"{what} {rank} is outside 0..{self.size - 1}")

    def _take(self, source: int, tag: int) -> _Envelope | None:
        box = self._ctx.mailboxes[self.rank]
        for envelope in box:
            if _matches(envelope, source, tag):
                box.remove(envelope)
                return envelope
        return None

    def _peek(self, source: int, tag: int) -> Status | None:
        for envelope in self._ctx.mailboxes[self.rank]:
            if _matches(envelope, source, tag):
                return Status(envelope.source, envelope.tag, _count(envelope.payload))
        return None

    def send(self, obj: Any, dest: int, tag: int = 0) -> None:
        """Deliver a copy of ``obj`` to ``dest``'s mailbox."""
        self._check_rank(dest, "destination")
        if tag < 0:
            raise ValueError(f"tag must not be negative, got {tag}")
        envelope = _Envelope(self.rank, tag, copy.deepcopy(obj))
        with self._shared.cond:
            self._ctx.mailboxes[dest].append(envelope)
            self._shared.cond.notify_all()

    def isend(self, obj: Any, dest: int, tag: int = 0) -> Request:
        """Send without blocking; the returned request is already complete."""
        self.send(obj, dest, tag)
        return Request._completed(self, Status(self.rank, tag, _count(obj)))

    def recv(
        self, source: int = ANY_SOURCE, tag: int = ANY_TAG, timeout: float | None = None
    ) -> tuple[Any, Status]:
        """Block until a matching message arrives; return it with its status."""
        request = self.irecv(source, tag)
        value = request.wait(timeout)
        return value, request.status

    def irecv(self, source: int = ANY_SOURCE, tag: int = ANY_TAG) -> Request:
        """Start a receive that completes through ``test`` or ``wait``."""
        self._check_rank(source, "source", wildcard=True)
        return Request(self, source, tag)

    def probe(
        self, source: int = ANY_SOURCE, tag: int = ANY_TAG, timeout: float | None = None
    ) -> Status:
        """Block until a matching message is waiting, without taking it."""
        self._check_rank(source, "source", wildcard=True)
        with self._shared.cond:
            return self._shared.wait(lambda: self._peek(source, tag), timeout, "probe")

    def iprobe(self, source: int = ANY_SOURCE, tag: int = ANY_TAG) -> Status | None:
        """Return the status of a waiting matching message, or None."""
        self._check_rank(source, "source", wildcard=True)
        with self._shared.cond:
            return self._peek(source, tag)

    def split(self, color: int | None, key: int | None = None) -> Communicator | None:
        """Collectively split into groups by ``color``, ordered by ``key`` then rank."""
        order = self.rank if key is None else key

        def combine(contributions: dict[int, tuple[int | None, int]]) -> dict[int, Any]:
            groups: dict[int, list[tuple[int, int]]] = {}
            for rank, (col, k) in contributions.items():
                if col is not None:
                    groups.setdefault(col, []).append((k, rank))
            result: dict[int, Any] = {rank: None for rank in contributions}
            for members in groups.values():
                members.sort()
                context = _Context(self._shared, len(members))
                for new_rank, (_, rank) in enumerate(members):
                    result[rank] = Communicator(context, new_rank)
            return result

        return self._ctx.collective(self.rank, (color, order), combine, None, "split")

    def barrier(self, timeout: float | None = None) -> None:
        """Block until every rank of this communicator has reached the barrier."""
        self._ctx.collective(
            self.rank,
            None,
            lambda contributions: dict.fromkeys(contributions),
            timeout,
            "barrier",
        )

    def window(self, name: str) -> _Window:
        """Return the group's shared window called ``name``, creating it zeroed."""
        with self._shared.cond:
            return self._ctx.windows.setdefault(name, _Window(self.size))

    def wtime(self) -> float:
        """Wall-clock time in seconds for measuring intervals."""
        return time.perf_counter()


class World:
    """A fixed set of ranks sharing one message space."""

    def __init__(self, size: int, timeout: float | None = None) -> None:
        if size < 1:
            raise ValueError(f"a world needs at least one rank, got {size}")
        self.size = size
        self.timeout = timeout
        self._shared = _Shared()
        self._context = _Context(self._shared, size)

    def comm(self, rank: int) -> Communicator:
        """The communicator of ``rank`` in this world."""
        if not 0 <= rank < self.size:
            raise ValueError(f"rank {rank} is outside 0..{self.size - 1}")
        return Communicator(self._context, rank)

    def run(self, target: Callable[..., Any], *args: Any) -> list[Any]:
        """Run ``target(comm, *args)`` on every rank at once; return results by rank."""
        results: list[Any] = [None] * self.size
        failures: dict[int, BaseException] = {}

        def body(rank: int) -> None:
            try:
                results[rank] = target(self.comm(rank), *args)
            except BaseException as exc:  # noqa: BLE001 - reported by run
                failures[rank] = exc
                self._shared.abort()

        threads = [
            threading.Thread(target=body, args=(rank,), name=f"rank-{rank}", daemon=True)
            for rank in range(self.size)
        ]
        for thread in threads:
            thread.start()
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        stuck = [thread.name for thread in threads if thread.is_alive()]
        if stuck:
            self._shared.abort()
            raise MessageTimeout(f"{', '.join(stuck)} did not finish within {self.timeout} s")
        causes = [exc for _, exc in sorted(failures.items()) if not isinstance(exc, _Aborted)]
        if causes:
            raise causes[0]
        if failures:
            raise next(iter(failures.values()))
        return results