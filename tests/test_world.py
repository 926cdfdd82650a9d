import threading
import time

import pytest

from consensuslab.world import (
    ANY_SOURCE,
    MessageTimeout,
    Status,
    World,
)


def test_self_send_probe_and_receive():
    comm = World(1).comm(0)
    request = comm.isend(123, 0, 0)
    assert request.test() is True
    status = comm.iprobe(0, 0)
    assert status == Status(source=0, tag=0, count=1)
    value, recv_status = comm.recv(0, 0)
    assert value == 123
    assert recv_status.source == 0


def test_iprobe_empty_returns_none():
    comm = World(2).comm(1)
    assert comm.iprobe() is None


def test_recv_timeout():
    comm = World(2).comm(0)
    with pytest.raises(MessageTimeout):
        comm.recv(timeout=0.05)


def test_probe_timeout():
    comm = World(1).comm(0)
    with pytest.raises(MessageTimeout):
        comm.probe(timeout=0.05)


def test_probe_leaves_message_in_place():
    world = World(2)
    world.comm(1).send([1, 2, 3], 0, tag=4)
    comm = world.comm(0)
    status = comm.probe()
    assert (status.source, status.tag, status.count) == (1, 4, 3)
    value, _ = comm.recv(status.source, status.tag)
    assert value == [1, 2, 3]


def test_irecv_completes_after_send():
    world = World(2)
    receiver = world.comm(0)
    request = receiver.irecv(ANY_SOURCE)
    assert request.test() is False
    world.comm(1).send("hello", 0, tag=2)
    assert request.test() is True
    assert request.value == "hello"
    assert request.status.source == 1
    assert request.status.tag == 2


def test_cancel_pending_request():
    world = World(2)
    request = world.comm(0).irecv()
    assert request.cancel() is True
    world.comm(1).send(1, 0)
    assert request.test() is False
    with pytest.raises(RuntimeError):
        request.wait()


def test_cancel_completed_request_fails():
    world = World(2)
    world.comm(1).send(5, 0)
    request = world.comm(0).irecv()
    assert request.wait() == 5
    assert request.cancel() is False


def test_send_copies_payload():
    world = World(2)
    payload = [0, 0]
    world.comm(0).send(payload, 1)
    payload[0] = 99
    value, _ = world.comm(1).recv()
    assert value == [0, 0]


def test_tag_matching_and_fifo_order():
    world = World(2)
    sender = world.comm(0)
    for item, tag in [("a", 0), ("b", 1), ("c", 0), ("d", 1)]:
        sender.send(item, 1, tag)
    receiver = world.comm(1)
    assert receiver.recv(tag=1)[0] == "b"
    assert receiver.recv(tag=1)[0] == "d"
    assert [receiver.recv()[0] for _ in range(2)] == ["a", "c"]


def test_invalid_destination():
    comm = World(2).comm(0)
    with pytest.raises(ValueError):
        comm.send(1, 2)
    with pytest.raises(ValueError):
        comm.send(1, 1, tag=-3)


def test_invalid_world_and_rank():
    with pytest.raises(ValueError):
        World(0)
    with pytest.raises(ValueError):
        World(3).comm(3)


def test_run_ring_exchange():
    def body(comm):
        comm.send(comm.rank, (comm.rank + 1) % comm.size)
        value, status = comm.recv()
        return value, status.source

    results = World(4).run(body)
    assert results == [(3, 3), (0, 0), (1, 1), (2, 2)]


def test_barrier_synchronises_all_ranks():
    arrived = []
    lock = threading.Lock()

    def body(comm):
        with lock:
            arrived.append(comm.rank)
        comm.barrier(timeout=5)
        with lock:
            return len(arrived)

    assert World(5).run(body) == [5] * 5


def test_barrier_timeout_alone():
    comm = World(2).comm(0)
    with pytest.raises(MessageTimeout):
        comm.barrier(timeout=0.05)


def test_split_groups_by_color_and_key():
    def body(comm):
        sub = comm.split(comm.rank % 2, -comm.rank)
        return sub.rank, sub.size

    results = World(6).run(body)
    assert results[4] == (0, 3)
    assert results[0] == (2, 3)
    assert results[5] == (0, 3)
    assert results[1] == (2, 3)


def test_split_undefined_color():
    def body(comm):
        sub = comm.split(None if comm.rank == 0 else 1)
        return None if sub is None else sub.size

    assert World(3).run(body) == [None, 2, 2]


def test_split_communicators_are_separate():
    def body(comm):
        sub = comm.split(0, comm.rank)
        if sub.rank == 0:
            sub.send("in-sub", 1)
            comm.send("in-world", 1)
            return None
        return sub.recv(timeout=5)[0], comm.recv(timeout=5)[0]

    assert World(2).run(body)[1] == ("in-sub", "in-world")


def test_window_shared_by_group():
    def body(comm):
        comm.window("counter").exchange(comm.rank, lambda old: old + comm.rank + 1)
        comm.barrier(timeout=5)
        return sum(comm.window("counter").snapshot())

    assert World(4).run(body) == [10, 10, 10, 10]


def test_run_reraises_rank_failure():
    def body(comm):
        if comm.rank == 1:
            raise KeyError("boom")
        comm.recv()

    with pytest.raises(KeyError):
        World(3).run(body)


def test_run_timeout():
    def body(comm):
        comm.recv()

    with pytest.raises(MessageTimeout):
        World(2, timeout=0.2).run(body)


def test_wtime_increases():
    comm = World(1).comm(0)
    first = comm.wtime()
    time.sleep(0.01)
    assert comm.wtime() > first