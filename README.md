# consensuslab

A small laboratory for message-passing algorithms. Each "process" is a
thread inside one Python interpreter, and the processes talk to each other
through a communicator with tagged point-to-point messages, probes,
sub-groups, barriers and shared integer windows. On top of that sit two
experiments:

- **Lamport clocks** (`consensuslab.lamport`): a broadcast from rank 0 with
  replies, and a clock vector passed around a ring, each process advancing
  its own entry.
- **Sequence Paxos** (`consensuslab.paxos`, `consensuslab.sequence`):
  clients, proposers, acceptors and learners agree on an ordered list of
  values.

The package has no dependencies outside the standard library.

## The message-passing world

`consensuslab.world` provides the building blocks:

- `World(size, timeout=None)` holds a fixed number of ranks.
  `World.run(target, *args)` calls `target(comm, *args)` on every rank at
  once, each in its own thread, and returns the results as a list indexed by
  rank. If a rank raises, the other blocked ranks are interrupted and the
  exception is raised from `run`; if `timeout` is set and some rank does not
  finish in time, `run` raises `MessageTimeout`. `World.comm(rank)` gives a
  rank's `Communicator`.
- `Communicator` has `rank` and `size`, and offers:
  - `send(obj, dest, tag=0)` delivers a deep copy of `obj`;
    `isend(...)` does the same and returns an already completed `Request`.
  - `recv(source=ANY_SOURCE, tag=ANY_TAG, timeout=None)` blocks and returns
    `(value, status)`; `irecv(source, tag)` returns a `Request`.
  - `probe(...)` blocks until a matching message waits and returns its
    `Status` without taking it; `iprobe(...)` returns the `Status` or `None`.
  - `split(color, key=None)` is collective and returns a communicator for the
    ranks sharing `color`, ordered by `key` then rank (`None` for a `None`
    color).
  - `barrier(timeout=None)`, `window(name)` (a zeroed row of integers shared
    by the group, one slot per rank) and `wtime()`.
- `Request` has `test()`, `wait(timeout=None)` and `cancel()`, and after
  completion carries `value` and `status`.
- `Status` holds `source`, `tag` and `count`.
- `ANY_SOURCE` and `ANY_TAG` match any sender or tag.
- A blocking receive, probe or barrier that runs out of time raises
  `MessageTimeout`, a subclass of `TimeoutError`.

```python
from consensuslab.world import World

def echo(comm):
    if comm.rank == 0:
        comm.send("hello", 1, tag=3)
        return None
    value, status = comm.recv(source=0)
    return value, status.tag

print(World(2).run(echo))   # [None, ('hello', 3)]
```

## Lamport clocks

```python
from consensuslab.lamport import run_broadcast, run_ring

clocks = run_broadcast(4)   # the clock each rank sent back, as collected by rank 0
ring = run_ring(4)          # the clock after one trip round the ring
```

`broadcast_process(comm)` and `ring_process(comm)` are the per-rank bodies,
and `format_clock(rank, clock)` and `format_ring_clock(clock)` give the text
the processes print.

## Shared counters

`consensuslab.counters.SharedVariable(comm, name)` is an integer shared by
the ranks of a communicator through the window `name`. Each rank owns one
slot and keeps a private copy of its own value:

- `increment(amount=1)` adds to this rank's value and returns the sum over
  all ranks;
- `raise_to(value)` raises this rank's value to at least `value` and returns
  the largest over all ranks, never below zero;
- `reset(value)` sets this rank's own value and returns it, while its shared
  slot is only raised, never lowered;
- `get()` returns this rank's own value.

## Sequence Paxos

`consensuslab.paxos` holds the protocol itself:

- `Role` (`CLIENT`, `PROPOSER`, `ACCEPTOR`, `LEARNER`) and `Tag`, the message
  tags.
- `Proposal(value, round_number, custom_round_number=EMPTY)` and
  `Decisions`, a fixed list of 100 slots with `last_pos` and `values`.
- `get_role(rank, n_roles, nproc)` hands out roles in equal consecutive bins;
  `quorum(num_requests)` is the number of replies a proposer waits for.
- `Proposer`, `Acceptor` and `Learner` take `(num_requests, comm=None)`.
  Their `handle(tag, msg)` reacts to one message and returns the messages to
  send as `(role, tag, payload)` triples addressed to every rank of that
  role. Without a communicator they count with private counters, so the
  protocol can be stepped through without threads:

```python
from consensuslab.paxos import Acceptor, Proposal, Proposer, Tag

proposer, acceptor = Proposer(1), Acceptor(1)
(_, tag, prepare), = proposer.handle(Tag.PROPOSE, Proposal(10, 5))
(_, tag, promise), = acceptor.handle(tag, prepare)
print(tag, promise)   # Tag.PROMISE Proposal(value=10, round_number=5, custom_round_number=5)
```

`consensuslab.sequence` runs the four roles on a world:

```python
from consensuslab.sequence import run_sequence, run_single

single = run_single(4, [10, 20, 30, 40, 50])
sequence = run_sequence(4, [10, 20, 30, 40, 50, 60])
print(sequence.decided)
```

- `run_single(size, values)` needs a multiple of four ranks. The client
  proposes its first value, waits for the learners' reports and proposes the
  value at the reported position once more before the ranks stop.
- `run_sequence(size, values)` needs exactly four ranks. The client keeps
  proposing the value at each reported position until the last value has
  been proposed.
- Both return a `SequenceResult` with `proposed`, `reported` (the positions
  the learners sent the client) and `decided` (the learners' list).
- `client_process(comm, values, continuous=False)` is the client's body.

The processes print their progress to standard output as they run.

## What the package does not do

Everything runs inside one interpreter: there is no network transport, no
separate operating-system processes and no persistence of decided values.
The package is a library only and installs no command.

## Tests

Install the `test` extra and run `pytest` from the project directory.