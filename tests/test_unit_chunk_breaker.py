from campaign_dispatch.utils.circuit_breaker import ChunkBreaker


def test_breaker_trips_at_quarter_of_chunk():
    breaker = ChunkBreaker(chunk_size=200, ratio=0.25)
    for _ in range(49):
        breaker.record_failure()
    assert breaker.tripped is False
    breaker.record_failure()
    assert breaker.tripped is True
    snap = breaker.snapshot()
    assert snap["threshold"] == 50 and snap["failures"] == 50


def test_breaker_uses_actual_slice_size():
    breaker = ChunkBreaker(chunk_size=10, ratio=0.25)
    breaker.record_failure()
    breaker.record_failure()
    assert not breaker.tripped
    breaker.record_failure()
    assert breaker.tripped


def test_empty_chunk_never_trips():
    assert ChunkBreaker(chunk_size=0, ratio=0.25).tripped is False
