"""Running clients, proposers, acceptors and learners as one group of ranks.

The ranks of a world are split evenly into the four roles of
:mod:`consensuslab.paxos`. In a single run the client proposes its first
value, waits for the learners to report how many values are decided, and
proposes the value at that position once more before every rank stops.
In a continuous run the client keeps proposing the value at each reported
position until it has proposed the last one. Then the stop is passed on
from the client through the proposers to the acceptors and learners.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from consensuslab.counters import SharedVariable
from consensuslab.paxos import (
    EMPTY,
    N_ROLES,
    Acceptor,
    Decisions,
    Learner,
    Outgoing,
    Proposal,
    Proposer,
    Role,
    Tag,
    get_role,
)
from consensuslab.world import ANY_TAG, Communicator, World

_STOP = max(Tag) + 1
_RUN_TIMEOUT = 120.0
_RULE = "===================================="


@dataclass(frozen=True)
class SequenceResult:
    """What the client proposed and heard, and what the learners decided."""

    proposed: tuple[int, ...]
    reported: tuple[int, ...]
    decided: tuple[int, ...]


def _requests(size: int) -> int:
    per_role = size // N_ROLES
    if per_role < 1:
        raise ValueError(f"{size} ranks cannot fill {N_ROLES} roles")
    return per_role


def _ranks(role: Role, per_role: int) -> range:
    return range(role * per_role, (role + 1) * per_role)


def _send_to(comm: Communicator, role: Role, tag: int, payload: Any, per_role: int) -> None:
    for dest in _ranks(role, per_role):
        comm.send(payload, dest, tag=int(tag))


def _dispatch(comm: Communicator, outgoing: Iterable[Outgoing], per_role: int) -> None:
    for role, tag, payload in outgoing:
        _send_to(comm, role, tag, payload, per_role)


def client_process(
    comm: Communicator, values: Sequence[int], continuous: bool = False
) -> tuple[tuple[int, ...], tuple[int, ...]]:
    """Run the client role; return the values it proposed and the positions reported to it."""
    values = list(values)
    if not values:
        raise ValueError("the client needs at least one value to propose")
    per_role = _requests(comm.size)
    proposed: list[int] = []
    reported: list[int] = []

    def propose(value: int) -> None:
        proposal = Proposal(value, int(time.time()), EMPTY)
        _send_to(comm, Role.PROPOSER, Tag.PROPOSE, proposal, per_role)
        proposed.append(value)

    propose(values[0])
    last_pos = 0

    if not continuous:
        received = 0
        while received < per_role:
            message, status = comm.recv(tag=ANY_TAG)
            if status.tag == _STOP:
                return tuple(proposed), tuple(reported)
            last_pos = message
            reported.append(message)
            received += 1
        print(f"recv_last_pos: {last_pos}")
        if last_pos < len(values):
            print(f"start next sequence: {values[last_pos]}")
            propose(values[last_pos])
        return tuple(proposed), tuple(reported)

    counter = SharedVariable(comm, "client.messages")
    ready = last_pos < len(values) - 1
    while ready:
        message, status = comm.recv(tag=ANY_TAG)
        if status.tag == _STOP:
            break
        last_pos = message
        reported.append(message)
        print(f"recv_last_pos: {last_pos}")
        if last_pos >= len(values):
            break
        print(f"start next sequence: {values[last_pos]}")
        propose(values[last_pos])
        if counter.increment(1) == per_role:
            counter.reset(0)
            ready = last_pos < len(values) - 1
    _send_to(comm, Role.PROPOSER, _STOP, None, per_role)
    return tuple(proposed), tuple(reported)


def _proposer_process(comm: Communicator, per_role: int, continuous: bool) -> None:
    proposer = Proposer(per_role, comm)
    stopping = False
    rejected = False
    while True:
        message, status = comm.recv(tag=ANY_TAG)
        if status.tag == _STOP:
            stopping = True
            if proposer.messages == 0:
                break
            continue
        tag = Tag(status.tag)
        _dispatch(comm, proposer.handle(tag, message), per_role)
        if proposer.rejected:
            print(f"nack was received for round {message.custom_round_number}")
            rejected = True
            break
        if proposer.complete:
            print(
                f"[Proposer round_number: {proposer.round_number}, "
                f"current_value: {proposer.current_value}]"
            )
            if not continuous or stopping:
                break

    if rejected:
        for role in (Role.ACCEPTOR, Role.LEARNER, Role.CLIENT):
            _send_to(comm, role, _STOP, None, per_role)
    elif continuous:
        for role in (Role.ACCEPTOR, Role.LEARNER):
            _send_to(comm, role, _STOP, None, per_role)


def _acceptor_process(comm: Communicator, per_role: int, continuous: bool) -> None:
    acceptor = Acceptor(per_role, comm)
    while True:
        message, status = comm.recv(tag=ANY_TAG)
        if status.tag == _STOP:
            break
        _dispatch(comm, acceptor.handle(Tag(status.tag), message), per_role)
        if acceptor.complete:
            print(
                f"[Acceptor round_number_promise: {acceptor.round_number_promise}, "
                f"current_value_accepted: {acceptor.current_value_accepted}]"
            )
            if not continuous:
                break


def _print_decisions(decisions: Decisions, inclusive: bool) -> None:
    limit = decisions.last_pos + 1 if inclusive else decisions.last_pos
    print(_RULE)
    print(_RULE)
    for index, value in enumerate(decisions.array[:limit]):
        print(f"index: {index}, value: {value}")
    print(_RULE)
    print(_RULE)


def _learner_process(comm: Communicator, per_role: int, continuous: bool) -> Decisions:
    learner = Learner(per_role, comm)
    while True:
        message, status = comm.recv(tag=ANY_TAG)
        if status.tag == _STOP:
            break
        _dispatch(comm, learner.handle(Tag(status.tag), message), per_role)
        if learner.complete:
            _print_decisions(learner.decisions, inclusive=not continuous)
            if not continuous:
                break
    return learner.decisions


def _rank_process(comm: Communicator, values: Sequence[int], continuous: bool) -> tuple[Role, Any]:
    per_role = _requests(comm.size)
    role = Role(get_role(comm.rank, N_ROLES, comm.size))
    print(f"You are in rank: {comm.rank}.")
    result: Any = None
    if role is Role.CLIENT:
        result = client_process(comm, values, continuous)
    elif role is Role.PROPOSER:
        _proposer_process(comm, per_role, continuous)
    elif role is Role.ACCEPTOR:
        _acceptor_process(comm, per_role, continuous)
    else:
        result = _learner_process(comm, per_role, continuous)
    comm.barrier()
    return role, result


def _collect(results: list[tuple[Role, Any]]) -> SequenceResult:
    proposed, reported = next(result for role, result in results if role is Role.CLIENT)
    decisions = next(result for role, result in results if role is Role.LEARNER)
    return SequenceResult(proposed, reported, tuple(decisions.values))


def _check_values(values: Sequence[int]) -> list[int]:
    values = list(values)
    if not values:
        raise ValueError("at least one value is needed")
    return values


def run_single(size: int, values: Sequence[int]) -> SequenceResult:
    """Run one round of proposals on ``size`` ranks, a multiple of four."""
    if size < N_ROLES or size % N_ROLES:
        raise ValueError(f"must use a multiple of {N_ROLES} ranks, got {size}")
    values = _check_values(values)
    return _collect(World(size, timeout=_RUN_TIMEOUT).run(_rank_process, values, False))


def run_sequence(size: int, values: Sequence[int]) -> SequenceResult:
    """Decide every value of ``values`` in order on exactly four ranks."""
    if size != N_ROLES:
        raise ValueError(f"must use exactly {N_ROLES} ranks, got {size}")
    values = _check_values(values)
    return _collect(World(size, timeout=_RUN_TIMEOUT).run(_rank_process, values, True))