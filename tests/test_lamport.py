import pytest

from consensuslab.lamport import (
    broadcast_process,
    format_clock,
    format_ring_clock,
    ring_process,
    run_broadcast,
    run_ring,
)
from consensuslab.world import World


def test_format_clock_layout():
    assert format_clock(2, [1, 0, 3]) == "rank: 2) [1 0 3 ]"


def test_format_clock_empty():
    assert format_clock(0, []) == "rank: 0) []"


def test_format_ring_clock_layout():
    text = format_ring_clock([1, 2])
    assert text == "1) process (0) time:1 | \n2) process (1) time:2 | \n\n"


def test_format_ring_clock_line_count():
    clock = [5, 6, 7, 8]
    lines = format_ring_clock(clock).split("\n")
    assert len(lines) == len(clock) + 2
    assert all(line.endswith("| ") for line in lines[: len(clock)])


@pytest.mark.parametrize("size", [2, 3, 5])
def test_broadcast_clocks(size):
    collected = run_broadcast(size)
    assert len(collected) == size
    own = [0] * size
    own[0] = 1
    assert collected[0] == own
    for rank in range(1, size):
        clock = collected[rank]
        assert clock[0] == 1
        assert clock[rank] == clock[0] + 1
        others = [tick for index, tick in enumerate(clock) if index not in (0, rank)]
        assert others == [0] * (size - 2)


def test_broadcast_single_rank():
    assert run_broadcast(1) == [[1]]


def test_broadcast_worker_results_match_collected():
    results = World(4).run(broadcast_process)
    assert results[0][1:] == results[1:]


@pytest.mark.parametrize("size", [2, 3, 6])
def test_ring_clock_increases_by_one(size):
    clock = run_ring(size)
    assert clock == list(range(1, size + 1))


def test_ring_workers_forward_partial_clocks():
    size = 4
    results = World(size).run(ring_process)
    for rank in range(1, size):
        expected = list(range(1, rank + 2)) + [0] * (size - rank - 1)
        assert results[rank] == expected
    assert results[0] == results[size - 1]


def test_ring_needs_two_ranks():
    with pytest.raises(ValueError):
        run_ring(1)


def test_ring_prints_summary(capsys):
    clock = run_ring(3)
    out = capsys.readouterr().out
    assert "We have 3 processes." in out
    assert format_ring_clock(clock) in out


def test_broadcast_prints_each_rank(capsys):
    collected = run_broadcast(3)
    out = capsys.readouterr().out
    for rank, clock in enumerate(collected):
        assert format_clock(rank, clock) in out