"""
Tests for the ChainPulse poll loop: snapshot publication, pulse timing,
failure handling and start/stop lifecycle.
"""
import asyncio

import pytest

from ledger_watch.core.custom_types import BlockSummary
from ledger_watch.live.chain_pulse import ChainPulse


def _heights(pulse: ChainPulse):
    return [b.height for b in pulse.snapshot.recent_blocks]


@pytest.mark.asyncio
async def test_first_poll_publishes_snapshot_without_pulse(chain_client):
    pulse = ChainPulse(chain_client)
    assert pulse.connected is False
    assert pulse.snapshot.head_height is None

    assert await pulse.refresh() is True

    snap = pulse.snapshot
    assert pulse.connected is True
    assert snap.head_height == 120
    assert snap.gas_parameters.target_gas_limit == 40_000_000
    assert snap.latest_block.hash == "0x" + "ab" * 32
    assert _heights(pulse) == [120, 119, 118, 117, 116, 115]
    assert snap.recent_blocks[0] == snap.latest_block
    # no previous height, so no pulse
    assert pulse.pulse is False
    assert pulse.last_updated_ms > 0


@pytest.mark.asyncio
async def test_pulse_raised_on_height_increase_and_cleared(chain_client):
    pulse = ChainPulse(chain_client, pulse_duration_ms=50)
    await pulse.refresh()

    chain_client.advance()
    assert await pulse.refresh() is True
    assert pulse.snapshot.head_height == 121
    assert pulse.pulse is True
    assert pulse.metrics.counters["pulses"] == 1

    await asyncio.sleep(0.15)
    assert pulse.pulse is False


@pytest.mark.asyncio
async def test_no_pulse_when_height_unchanged_or_lower(chain_client):
    pulse = ChainPulse(chain_client, pulse_duration_ms=50)
    await pulse.refresh()
    await pulse.refresh()
    assert pulse.pulse is False

    chain_client.head_height = 118
    assert await pulse.refresh() is True
    assert pulse.snapshot.head_height == 118
    assert pulse.pulse is False
    assert pulse.metrics.counters["pulses"] == 0


@pytest.mark.asyncio
async def test_pulse_lasts_its_duration_across_quiet_polls(chain_client):
    pulse = ChainPulse(chain_client, pulse_duration_ms=300)
    await pulse.refresh()
    chain_client.advance()
    await pulse.refresh()
    assert pulse.pulse is True

    await asyncio.sleep(0.05)
    await pulse.refresh()  # same height
    assert pulse.pulse is True

    await asyncio.sleep(0.45)
    assert pulse.pulse is False


@pytest.mark.asyncio
async def test_recent_window_near_genesis(chain_client):
    chain_client.head_height = 2
    pulse = ChainPulse(chain_client)
    await pulse.refresh()
    assert _heights(pulse) == [2, 1, 0]


@pytest.mark.asyncio
async def test_recent_window_stays_bounded_and_descending(chain_client):
    pulse = ChainPulse(chain_client)
    for _ in range(10):
        chain_client.advance()
        assert await pulse.refresh() is True
        heights = _heights(pulse)
        assert 1 <= len(heights) <= 6
        assert all(a > b for a, b in zip(heights, heights[1:]))
        assert heights[0] == pulse.snapshot.head_height


@pytest.mark.asyncio
async def test_advance_with_explicit_blocks(chain_client):
    pulse = ChainPulse(chain_client, recent_blocks=3)
    await pulse.refresh()
    chain_client.advance([BlockSummary(height=125, hash="0xfeed", tx_count=9)])
    await pulse.refresh()
    assert pulse.snapshot.latest_block.hash == "0xfeed"
    assert _heights(pulse) == [125, 124, 123]


@pytest.mark.asyncio
async def test_failed_cycle_keeps_previous_snapshot(chain_client):
    pulse = ChainPulse(chain_client, pulse_duration_ms=50)
    await pulse.refresh()
    before = pulse.snapshot
    updated_at = pulse.last_updated_ms

    chain_client.fail_methods = {"get_block"}
    chain_client.advance()
    assert await pulse.refresh() is False
    assert pulse.snapshot is before
    assert pulse.last_updated_ms == updated_at
    assert pulse.pulse is False
    assert pulse.metrics.counters["cycles_failed"] == 1
    assert "get_block unavailable" in pulse.metrics.last_error

    # next successful cycle compares against the last published height
    chain_client.fail_methods = set()
    assert await pulse.refresh() is True
    assert pulse.snapshot.head_height == 121
    assert pulse.pulse is True


@pytest.mark.asyncio
async def test_failure_before_first_success_stays_disconnected(chain_client):
    chain_client.fail_methods = {"get_head_height"}
    pulse = ChainPulse(chain_client)
    assert await pulse.refresh() is False
    assert pulse.connected is False
    assert "get_block" not in chain_client.calls
    assert "get_blocks" not in chain_client.calls


@pytest.mark.asyncio
async def test_mismatched_latest_block_aborts_cycle(chain_client):
    async def wrong_block(height):
        return BlockSummary(height=height - 1, hash="0xdead")

    chain_client.get_block = wrong_block
    pulse = ChainPulse(chain_client)
    assert await pulse.refresh() is False
    assert pulse.connected is False


@pytest.mark.asyncio
async def test_last_updated_strictly_increases(chain_client):
    pulse = ChainPulse(chain_client, clock=lambda: 1000)
    await pulse.refresh()
    assert pulse.last_updated_ms == 1000
    await pulse.refresh()
    assert pulse.last_updated_ms == 1001


@pytest.mark.asyncio
async def test_start_polls_immediately_and_repeats(chain_client):
    pulse = ChainPulse(chain_client)
    pulse.start(20)
    try:
        await asyncio.sleep(0.15)
        assert pulse.connected is True
        assert pulse.metrics.counters["cycles_ok"] >= 3
    finally:
        pulse.stop()


@pytest.mark.asyncio
async def test_start_twice_keeps_single_schedule(chain_client):
    pulse = ChainPulse(chain_client)
    pulse.start(1000)
    pulse.start(1000)
    try:
        await asyncio.sleep(0.05)
        assert chain_client.calls.count("get_head_height") == 1
        assert pulse.is_running is True
    finally:
        pulse.stop()


@pytest.mark.asyncio
async def test_stop_discards_cycle_in_flight(gated_client):
    gated_client.gate = asyncio.Event()
    pulse = ChainPulse(gated_client)
    seen = []
    pulse.subscribe(seen.append)

    pulse.start(1000)
    await asyncio.sleep(0.02)
    assert "get_head_height" in gated_client.calls

    pulse.stop()
    gated_client.gate.set()
    await pulse.wait_idle()

    assert pulse.connected is False
    assert pulse.snapshot.head_height is None
    assert seen == []
    assert pulse.metrics.counters["cycles_discarded"] == 1
    assert pulse.is_running is False


@pytest.mark.asyncio
async def test_slow_cycle_is_not_overlapped(gated_client):
    gated_client.gate = asyncio.Event()
    pulse = ChainPulse(gated_client)
    pulse.start(10)
    try:
        await asyncio.sleep(0.08)
        assert pulse.metrics.counters["cycles_started"] == 1
        assert pulse.metrics.counters["cycles_skipped"] >= 1

        gated_client.gate.set()
        await pulse.wait_idle()
        assert pulse.connected is True
    finally:
        pulse.stop()


@pytest.mark.asyncio
async def test_running_context_stops_on_exit(chain_client):
    pulse = ChainPulse(chain_client)
    async with pulse.running(1000):
        await asyncio.sleep(0.02)
        assert pulse.connected is True
    assert pulse.is_running is False
    assert pulse.connected is False
    assert pulse.pulse is False


def test_stop_without_start_is_safe(chain_client):
    pulse = ChainPulse(chain_client)
    pulse.stop()
    pulse.stop()
    assert pulse.is_running is False


@pytest.mark.asyncio
async def test_start_rejects_non_positive_interval(chain_client):
    pulse = ChainPulse(chain_client)
    with pytest.raises(ValueError):
        pulse.start(0)
    assert pulse.is_running is False


def test_constructor_validates_window_and_duration(chain_client):
    with pytest.raises(ValueError):
        ChainPulse(chain_client, recent_blocks=7)
    with pytest.raises(ValueError):
        ChainPulse(chain_client, pulse_duration_ms=0)


@pytest.mark.asyncio
async def test_listeners_notified_and_isolated(chain_client):
    pulse = ChainPulse(chain_client, pulse_duration_ms=30)
    states = []

    def broken(state):
        raise RuntimeError("listener blew up")

    pulse.subscribe(broken)
    unsubscribe = pulse.subscribe(states.append)

    assert await pulse.refresh() is True
    assert len(states) == 1
    assert states[0].connected is True
    assert states[0].pulse is False

    chain_client.advance()
    await pulse.refresh()
    assert states[-1].pulse is True

    # pulse expiry is published as its own state change
    await asyncio.sleep(0.1)
    assert states[-1].pulse is False
    assert states[-1].snapshot.head_height == 121

    unsubscribe()
    count = len(states)
    await pulse.refresh()
    assert len(states) == count


@pytest.mark.asyncio
async def test_refresh_waits_for_cycle_in_flight(gated_client):
    pulse = ChainPulse(gated_client)
    assert await pulse.refresh() is True
    assert pulse.snapshot.head_height == 120

    gated_client.gate = asyncio.Event()
    gated_client.advance()
    pulse.start(1000)
    try:
        # the scheduled cycle has read 121 and is blocked on the latest block
        await asyncio.sleep(0.02)
        gated_client.advance()
        manual = asyncio.create_task(pulse.refresh())
        await asyncio.sleep(0.02)
        assert not manual.done()

        gated_client.gate.set()
        assert await manual is False
        assert pulse.snapshot.head_height == 121
        assert pulse.metrics.counters["cycles_started"] == 2
        assert pulse.metrics.counters["cycles_skipped"] == 1
        assert pulse.metrics.counters["pulses"] == 1

        # the next cycle moves forward, never back
        assert await pulse.refresh() is True
        assert pulse.snapshot.head_height == 122
    finally:
        pulse.stop()


@pytest.mark.asyncio
async def test_refresh_after_stop_publishes_nothing(chain_client):
    pulse = ChainPulse(chain_client, pulse_duration_ms=50)
    seen = []
    pulse.subscribe(seen.append)

    pulse.start(1000)
    pulse.stop()
    chain_client.advance()

    assert await pulse.refresh() is False
    assert pulse.connected is False
    assert pulse.pulse is False
    assert seen == []
    assert chain_client.calls == []

    # a new start polls again
    async with pulse.running(1000):
        await asyncio.sleep(0.02)
        assert pulse.snapshot.head_height == 121


@pytest.mark.asyncio
async def test_pulse_clears_one_duration_after_first_increase(chain_client):
    pulse = ChainPulse(chain_client, pulse_duration_ms=300)
    await pulse.refresh()
    chain_client.advance()
    await pulse.refresh()

    await asyncio.sleep(0.15)
    chain_client.advance()
    await pulse.refresh()
    assert pulse.pulse is True
    assert pulse.metrics.counters["pulses"] == 2

    # ~370ms after the first increase, ~220ms after the second
    await asyncio.sleep(0.22)
    assert pulse.pulse is False
