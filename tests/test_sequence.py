import pytest

from consensuslab.paxos import Tag
from consensuslab.sequence import SequenceResult, client_process, run_sequence, run_single
from consensuslab.world import World


def test_single_round_decides_first_value():
    result = run_single(4, [10, 20, 30, 40, 50])
    assert result == SequenceResult(proposed=(10, 20), reported=(1,), decided=(10,))


def test_single_round_prints_decision_table(capsys):
    run_single(4, [10, 20, 30, 40, 50])
    out = capsys.readouterr().out
    assert "index: 0, value: 10" in out
    assert "recv_last_pos: 1" in out


def test_single_round_with_one_value_does_not_propose_again():
    result = run_single(4, [7])
    assert result.proposed == (7,)
    assert result.reported == (1,)
    assert result.decided == (7,)


def test_sequence_decides_every_value_in_order():
    values = [10, 20, 30, 40, 50, 60]
    result = run_sequence(4, values)
    assert result.decided == tuple(values)
    assert result.proposed == tuple(values)
    assert result.reported == tuple(range(1, len(values)))


def test_sequence_with_one_value():
    result = run_sequence(4, [7])
    assert result.decided == (7,)
    assert result.proposed == (7,)
    assert result.reported == ()


def test_sequence_reports_are_increasing():
    result = run_sequence(4, [3, 1, 4, 1, 5])
    assert list(result.reported) == sorted(result.reported)
    assert len(result.decided) == len(result.proposed)


@pytest.mark.parametrize("size", [3, 5, 6])
def test_single_rejects_sizes_not_multiple_of_four(size):
    with pytest.raises(ValueError):
        run_single(size, [1, 2])


@pytest.mark.parametrize("size", [3, 8])
def test_sequence_needs_exactly_four_ranks(size):
    with pytest.raises(ValueError):
        run_sequence(size, [1, 2])


def test_empty_values_are_rejected():
    with pytest.raises(ValueError):
        run_single(4, [])
    with pytest.raises(ValueError):
        run_sequence(4, [])


def _stub_world(values, continuous, replies):
    def target(comm):
        if comm.rank == 0:
            return client_process(comm, values, continuous)
        if comm.rank == 1:
            seen = []
            pending = list(replies)
            while True:
                message, status = comm.recv()
                if status.tag != Tag.PROPOSE:
                    return seen, status.tag
                seen.append(message.value)
                if pending:
                    comm.send(pending.pop(0), 0, tag=Tag.DECIDE_SEQ)
                elif not continuous:
                    return seen, None
        return None

    return World(4, timeout=30).run(target)


def test_client_single_proposes_value_at_reported_position():
    results = _stub_world([5, 6], False, [1])
    assert results[0] == ((5, 6), (1,))
    assert results[1] == ([5, 6], None)


def test_client_continuous_walks_values_then_stops_proposers():
    results = _stub_world([1, 2, 3], True, [1, 2])
    proposed, reported = results[0]
    assert proposed == (1, 2, 3)
    assert reported == (1, 2)
    seen, final_tag = results[1]
    assert seen == [1, 2, 3]
    assert final_tag not in {tag.value for tag in Tag}


def test_client_rejects_empty_values():
    def target(comm):
        if comm.rank == 0:
            return client_process(comm, [], False)
        return None

    with pytest.raises(ValueError):
        World(4, timeout=30).run(target)