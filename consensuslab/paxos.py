"""Roles and message handling for a sequence of Paxos decisions.

Ranks are split evenly into clients, proposers, acceptors and learners.
A client proposes a value; proposers prepare it with the acceptors, gather
promises, ask the acceptors to accept, and once enough acceptors have
accepted they append the value to a list of decisions sent to the learners.
Learners keep the longest list they have seen and report its length back
to the clients.

Each role is a small state machine: ``handle`` takes one received message
and returns the messages to send, as ``(role, tag, payload)`` triples that
address every rank of the named role.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Protocol

from consensuslab.counters import SharedVariable
from consensuslab.world import Communicator

EMPTY = -999
LIST_SIZE = 100
N_ROLES = 4


class Role(IntEnum):
    """The part a rank plays, in the order ranks are assigned to them."""

    CLIENT = 0
    PROPOSER = 1
    ACCEPTOR = 2
    LEARNER = 3


class Tag(IntEnum):
    """Tags of the messages exchanged between the roles."""

    PROPOSE = 0
    PROMISE = 1
    ACCEPTED = 2
    NACK = 3
    PREPARE = 4
    ACCEPT = 5
    DECIDE = 6
    DECIDE_SEQ = 7
    PINGS = 8


@dataclass(frozen=True)
class Proposal:
    """A value with the round it belongs to and the round it answers."""

    value: int
    round_number: int
    custom_round_number: int = EMPTY


@dataclass
class Decisions:
    """A fixed-size list of decided values and the position after the last one."""

    array: list[int] = field(default_factory=lambda: [0] * LIST_SIZE)
    last_pos: int = 0

    @property
    def values(self) -> list[int]:
        """The slots before ``last_pos``."""
        return self.array[: self.last_pos]


Outgoing = tuple[Role, Tag, Any]


class _Counter(Protocol):
    def increment(self, amount: int = 1) -> int: ...

    def reset(self, value: int) -> int: ...


class _LocalCounter:
    """A counter private to one rank."""

    def __init__(self) -> None:
        self._value = 0

    def increment(self, amount: int = 1) -> int:
        self._value += amount
        return self._value

    def reset(self, value: int) -> int:
        self._value = value
        return self._value


def _counter(comm: Communicator | None, name: str) -> _Counter:
    return _LocalCounter() if comm is None else SharedVariable(comm, name)


def get_role(rank: int, n_roles: int, nproc: int) -> int:
    """The index of the role that ``rank`` plays when ``nproc`` ranks share ``n_roles`` roles.

    Ranks are given out in equal consecutive bins; a rank past the last bin
    gets the index after the bin that reaches ``nproc``.
    """
    if n_roles <= 0:
        raise ValueError(f"the number of roles must be positive, got {n_roles}")
    if nproc < n_roles:
        raise ValueError(f"{nproc} ranks cannot fill {n_roles} roles")
    size = nproc // n_roles
    index = 0
    end = 0
    while index < n_roles or end < nproc:
        start = index * size
        end = start + size - 1
        if start <= rank <= end:
            return index
        index += 1
    return index


def quorum(num_requests: int) -> int:
    """How many answers out of ``num_requests`` ranks make a quorum."""
    return int(max(num_requests / 2.0, 1))


class Proposer:
    """Drives a proposal through the prepare and accept phases."""

    def __init__(self, num_requests: int, comm: Communicator | None = None) -> None:
        self.num_requests = num_requests
        self.threshold = 3 * num_requests
        self.round_number = EMPTY
        self.current_value = EMPTY
        self.max_promise_round_number = EMPTY
        self.promise_cnt = 0
        self.acks = 0
        self.last_pos = 0
        self.messages = 0
        self.accept_value = Proposal(0, 0, 0)
        self.decisions = Decisions()
        self.complete = False
        self.rejected = False
        self._promises = _counter(comm, "proposer.promises")
        self._acks = _counter(comm, "proposer.acks")
        self._messages = _counter(comm, "proposer.messages")
        self._positions = _counter(comm, "proposer.last_pos")

    def handle(self, tag: Tag, msg: Proposal) -> list[Outgoing]:
        """Handle one message and return what to send.

        Afterwards ``rejected`` tells whether an acceptor refused the current
        round, and ``complete`` whether the round's messages are all in and
        the proposer's state has been reset.
        """
        self.complete = False
        self.rejected = False
        out: list[Outgoing] = []
        quota = quorum(self.num_requests)

        if tag == Tag.PROPOSE:
            self.round_number = msg.round_number
            self.current_value = msg.value
            self.max_promise_round_number = msg.round_number
            out.append((Role.ACCEPTOR, Tag.PREPARE, msg))
        elif tag == Tag.PROMISE:
            if msg.custom_round_number == self.round_number:
                self.promise_cnt = self._promises.increment(1)
                if self.max_promise_round_number <= msg.round_number:
                    self.max_promise_round_number = msg.round_number
                    self.accept_value = msg
                if self.promise_cnt == quota:
                    if self.accept_value.value == EMPTY:
                        self.accept_value = replace(self.accept_value, value=self.current_value)
                    out.append((Role.ACCEPTOR, Tag.ACCEPT, self.accept_value))
        elif tag == Tag.ACCEPTED:
            if msg.custom_round_number == self.round_number:
                self.acks = self._acks.increment(1)
                if self.acks == quota:
                    if not 0 <= self.last_pos < LIST_SIZE:
                        raise IndexError(f"the decision list holds at most {LIST_SIZE} values")
                    self.decisions.array[self.last_pos] = self.accept_value.value
                    self.last_pos = self._positions.increment(1)
                    self.decisions.last_pos = self.last_pos
                    out.append((Role.LEARNER, Tag.DECIDE, copy.deepcopy(self.decisions)))
        elif tag == Tag.NACK:
            if msg.custom_round_number == self.round_number:
                self.round_number = 0
                self.rejected = True
                return out

        self.messages = self._messages.increment(1)
        if self.messages == self.threshold:
            self.round_number = EMPTY
            self.current_value = EMPTY
            self.max_promise_round_number = EMPTY
            self.promise_cnt = self._promises.reset(0)
            self.acks = self._acks.reset(0)
            self.messages = self._messages.reset(0)
            self.complete = True
        return out


class Acceptor:
    """Promises not to accept older rounds and accepts values of newer ones."""

    def __init__(self, num_requests: int, comm: Communicator | None = None) -> None:
        self.num_requests = num_requests
        self.threshold = 2 * num_requests
        self.round_number_promise = EMPTY
        self.round_number_accepted = EMPTY
        self.current_value_accepted = EMPTY
        self.messages = 0
        self.complete = False
        self._messages = _counter(comm, "acceptor.messages")

    def _nack(self, msg: Proposal) -> Outgoing:
        return (Role.PROPOSER, Tag.NACK, replace(msg, custom_round_number=msg.round_number))

    def _take(self, msg: Proposal) -> None:
        self.round_number_promise = msg.round_number
        self.round_number_accepted = msg.round_number
        self.current_value_accepted = msg.value

    def handle(self, tag: Tag, msg: Proposal) -> list[Outgoing]:
        """Handle one message and return what to send; ``complete`` tells whether the round ended."""
        self.complete = False
        out: list[Outgoing] = []

        if tag in (Tag.PREPARE, Tag.ACCEPT):
            if self.round_number_promise <= msg.round_number:
                self._take(msg)
                reply = Tag.PROMISE if tag == Tag.PREPARE else Tag.ACCEPTED
                payload = Proposal(
                    self.current_value_accepted,
                    self.round_number_accepted,
                    msg.round_number,
                )
                out.append((Role.PROPOSER, reply, payload))
            else:
                out.append(self._nack(msg))

        self.messages = self._messages.increment(1)
        if self.messages == self.threshold:
            self.round_number_promise = EMPTY
            self.round_number_accepted = EMPTY
            self.current_value_accepted = EMPTY
            self.messages = self._messages.reset(0)
            self.complete = True
        return out


class Learner:
    """Keeps the longest list of decisions and reports its length to the clients."""

    def __init__(self, num_requests: int, comm: Communicator | None = None) -> None:
        self.num_requests = num_requests
        self.threshold = num_requests
        self.decisions = Decisions()
        self.messages = 0
        self.complete = False
        self._messages = _counter(comm, "learner.messages")

    def handle(self, tag: Tag, msg: Decisions) -> list[Outgoing]:
        """Handle one message; once the round's messages are in, report ``last_pos`` to the clients."""
        self.complete = False
        out: list[Outgoing] = []

        if tag == Tag.DECIDE and self.decisions.last_pos < msg.last_pos:
            self.decisions = copy.deepcopy(msg)

        self.messages = self._messages.increment(1)
        if self.messages == self.threshold:
            self.messages = self._messages.reset(0)
            self.complete = True
            out.append((Role.CLIENT, Tag.DECIDE_SEQ, self.decisions.last_pos))
        return out