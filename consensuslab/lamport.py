"""Lamport clock exchanges: a broadcast with replies, and a token ring.

In the broadcast, rank 0 ticks its clock and sends it to every rank. Each
other rank advances its own entry past the sender's and reports back, and
rank 0 collects the reports in rank order. In the ring, the clock travels
from rank 0 through every rank and back again, and each hop advances the
entry of the rank that holds it.
"""

from __future__ import annotations

from consensuslab.world import ANY_SOURCE, ANY_TAG, Communicator, World


def format_clock(rank: int, clock: list[int]) -> str:
    """One line showing ``clock`` as reported by ``rank``."""
    body = "".join(f"{tick} " for tick in clock)
    return f"rank: {rank}) [{body}]"


def format_ring_clock(clock: list[int]) -> str:
    """One line per process with its time, followed by a blank line."""
    lines = "".join(
        f"{index + 1}) process ({index}) time:{tick} | \n" for index, tick in enumerate(clock)
    )
    return lines + "\n"


def _advance(clock: list[int], rank: int, source: int) -> None:
    clock[rank] = max(clock[rank], clock[source]) + 1


def broadcast_process(comm: Communicator) -> list[list[int]] | list[int]:
    """Run one rank of the broadcast.

    Rank 0 returns the clocks it collected, indexed by the rank that sent
    them. Every other rank returns the clock it sent back to rank 0.
    """
    rank, size = comm.rank, comm.size
    if rank == 0:
        print(f"We have {size} processes.")
        clock = [0] * size
        clock[rank] += 1
        for other in range(size):
            comm.send(clock, other, tag=rank)
        collected = []
        for other in range(size):
            received, _ = comm.recv(source=other, tag=0)
            print(format_clock(other, received))
            collected.append(list(received))
        return collected

    status = comm.probe(ANY_SOURCE, ANY_TAG)
    clock, _ = comm.recv(source=status.source, tag=status.tag)
    _advance(clock, rank, status.source)
    comm.send(clock, 0, tag=0)
    return list(clock)


def ring_process(comm: Communicator) -> list[int]:
    """Run one rank of the ring and return the clock it ended with.

    Rank 0 returns the clock once it has gone all the way round; every
    other rank returns the clock it passed on.
    """
    rank, size = comm.rank, comm.size
    if rank == 0:
        print(f"We have {size} processes.")
        clock = [0] * size
        clock[rank] += 1
        comm.send(clock, rank + 1, tag=rank)
        status = comm.probe(ANY_SOURCE, ANY_TAG)
        clock, _ = comm.recv(source=status.source, tag=status.tag)
        print(format_ring_clock(clock), end="")
        return list(clock)

    status = comm.probe(ANY_SOURCE, ANY_TAG)
    clock, _ = comm.recv(source=status.source, tag=status.tag)
    _advance(clock, rank, status.source)
    comm.send(clock, (rank + 1) % size, tag=rank)
    return list(clock)


def run_broadcast(size: int) -> list[list[int]]:
    """Run the broadcast on ``size`` ranks; return the clocks rank 0 collected."""
    return World(size).run(broadcast_process)[0]


def run_ring(size: int) -> list[int]:
    """Run the ring on ``size`` ranks; return the clock that came back to rank 0."""
    return World(size).run(ring_process)[0]