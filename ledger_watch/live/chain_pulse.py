"""Chain head synchronizer.

``ChainPulse`` polls a ``ChainQueryClient`` on a fixed interval and keeps one
immutable ``ChainSnapshot`` (head height, gas parameters, latest block and the
six most recent blocks). A cycle is:

  1. head height + gas parameters (concurrently)
  2. compare the new height with the previous snapshot
  3. latest block
  4. recent-block window (one batch)
  5. publish snapshot, bump ``last_updated_ms``, raise the pulse if the
     height went up

Any error aborts the cycle and leaves the previous snapshot in place; the next
tick proceeds as usual (no backoff, nothing surfaced to callers).

Lifecycle: every ``start``/``stop`` begins a new run generation. A cycle only
publishes if the generation it started in is still current, so a fetch still
in flight when ``stop`` is called completes but its result is dropped, and
nothing publishes again until the next ``start``.

Unlike a bare interval timer, a tick (or ``refresh``) that finds the previous
cycle of the same run still in flight is skipped instead of overlapping it.
"""
from __future__ import annotations
import asyncio
import contextlib
import time
from typing import Callable, List, Optional

from loguru import logger

from ledger_watch.core.custom_types import ChainSnapshot, PulseState
from ledger_watch.core.mathutils import (
    RECENT_BLOCK_WINDOW,
    height_advanced,
    order_recent_blocks,
    recent_heights,
)
from ledger_watch.onchain.base import ChainQueryClient
from .metrics import PollMetrics

PulseListener = Callable[[PulseState], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChainPulse:
    def __init__(
        self,
        client: ChainQueryClient,
        pulse_duration_ms: int = 1000,
        recent_blocks: int = RECENT_BLOCK_WINDOW,
        metrics: Optional[PollMetrics] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        if pulse_duration_ms <= 0:
            raise ValueError("pulse_duration_ms must be positive")
        if not 1 <= recent_blocks <= RECENT_BLOCK_WINDOW:
            raise ValueError(f"recent_blocks must be within 1..{RECENT_BLOCK_WINDOW}")
        self.client = client
        self.pulse_duration_ms = pulse_duration_ms
        self.recent_blocks = recent_blocks
        self.metrics = metrics or PollMetrics()
        self._clock = clock

        self._snapshot = ChainSnapshot.empty()
        self._pulse = False
        self._last_updated_ms = 0
        self._listeners: List[PulseListener] = []

        self._active = False
        self._stopped = False
        self._generation = 0
        self._ticker: Optional[asyncio.Task] = None
        self._cycle: Optional[asyncio.Task] = None
        self._cycle_generation = -1
        self._pulse_handle: Optional[asyncio.TimerHandle] = None

    @classmethod
    def from_settings(cls, client: ChainQueryClient, settings, metrics: Optional[PollMetrics] = None) -> "ChainPulse":
        return cls(
            client,
            pulse_duration_ms=settings.pulse.pulse_duration_ms,
            recent_blocks=settings.pulse.recent_blocks,
            metrics=metrics,
        )

    # ---------------- Read model ----------------------
    @property
    def snapshot(self) -> ChainSnapshot:
        return self._snapshot

    @property
    def pulse(self) -> bool:
        return self._pulse

    @property
    def last_updated_ms(self) -> int:
        return self._last_updated_ms

    @property
    def connected(self) -> bool:
        return self._snapshot.connected

    @property
    def is_running(self) -> bool:
        return self._active

    @property
    def state(self) -> PulseState:
        return PulseState(snapshot=self._snapshot, pulse=self._pulse, last_updated_ms=self._last_updated_ms)

    def subscribe(self, listener: PulseListener) -> Callable[[], None]:
        """Register ``listener(state)``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
        return _unsubscribe

    # ---------------- Scheduling ----------------------
    def start(self, poll_interval_ms: int) -> None:
        """Fetch now, then every ``poll_interval_ms``. Restarts if already running."""
        if poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        loop = asyncio.get_running_loop()
        self._cancel_timers()
        self._generation += 1
        self._active = True
        self._stopped = False
        self._ticker = loop.create_task(self._tick_loop(poll_interval_ms / 1000, self._generation))
        logger.info("ChainPulse started (interval={}ms, generation={})", poll_interval_ms, self._generation)

    def stop(self) -> None:
        """Cancel the schedule and discard the snapshot. Safe when not started.

        ``refresh`` does nothing afterwards until the next ``start``.
        """
        if self._active:
            logger.info("ChainPulse stopped (generation={})", self._generation)
        self._active = False
        self._stopped = True
        self._generation += 1
        self._cancel_timers()
        self._pulse = False
        self._snapshot = ChainSnapshot.empty()

    @contextlib.asynccontextmanager
    async def running(self, poll_interval_ms: int):
        """Scope polling to a block: started on entry, always stopped on exit."""
        self.start(poll_interval_ms)
        try:
            yield self
        finally:
            self.stop()

    async def wait_idle(self) -> None:
        """Wait for the cycle currently in flight (if any) to finish."""
        cycle = self._cycle
        if cycle is not None and not cycle.done():
            await asyncio.gather(cycle, return_exceptions=True)

    def _cancel_timers(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        if self._pulse_handle is not None:
            self._pulse_handle.cancel()
            self._pulse_handle = None

    async def _tick_loop(self, interval_sec: float, generation: int) -> None:
        while self._active and generation == self._generation:
            self._launch_cycle(generation)
            await asyncio.sleep(interval_sec)

    def _launch_cycle(self, generation: int) -> Optional[asyncio.Task]:
        """Start a cycle unless one of the same run is still in flight."""
        in_flight = self._cycle is not None and not self._cycle.done()
        if in_flight and self._cycle_generation == generation:
            self.metrics.inc("cycles_skipped")
            logger.debug("ChainPulse cycle skipped: previous cycle still in flight")
            return None
        self._cycle_generation = generation
        self._cycle = asyncio.get_running_loop().create_task(self._run_cycle(generation))
        return self._cycle

    # ---------------- Poll cycle ----------------------
    async def refresh(self) -> bool:
        """Run one cycle now. Returns True if a new snapshot was published.

        Works before ``start`` as a one-shot fetch. After ``stop`` it does
        nothing. If a cycle is already in flight, waits for it instead of
        overlapping it and returns False.
        """
        if self._stopped:
            return False
        cycle = self._launch_cycle(self._generation)
        if cycle is None:
            await self.wait_idle()
            return False
        return await cycle

    async def _run_cycle(self, generation: int) -> bool:
        started = time.perf_counter()
        self.metrics.inc("cycles_started")
        try:
            return await self._poll(generation)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.record_error(e)
            logger.warning("Chain poll failed, keeping previous snapshot: {}", e)
            return False
        finally:
            self.metrics.cycle_latency_ms.observe((time.perf_counter() - started) * 1000)

    async def _poll(self, generation: int) -> bool:
        previous = self._snapshot
        height, gas = await asyncio.gather(
            self.client.get_head_height(),
            self.client.get_gas_parameters(),
        )
        if height < 0:
            raise ValueError(f"Negative head height {height}")
        advanced = height_advanced(previous, height)

        latest = await self.client.get_block(height)
        if latest.height != height:
            raise ValueError(f"Provider returned block {latest.height} for height {height}")

        blocks = await self.client.get_blocks(recent_heights(height, self.recent_blocks))
        snapshot = ChainSnapshot(
            head_height=height,
            gas_parameters=gas,
            latest_block=latest,
            recent_blocks=order_recent_blocks(latest, blocks, self.recent_blocks),
        )
        return self._publish(generation, snapshot, advanced)

    def _publish(self, generation: int, snapshot: ChainSnapshot, advanced: bool) -> bool:
        if generation != self._generation or self._stopped:
            self.metrics.inc("cycles_discarded")
            logger.debug("Discarding snapshot at height {} from a stopped run", snapshot.head_height)
            return False
        self._snapshot = snapshot
        self._last_updated_ms = max(self._clock(), self._last_updated_ms + 1)
        if advanced:
            self._raise_pulse()
        self.metrics.inc("cycles_ok")
        self._notify()
        return True

    def _raise_pulse(self) -> None:
        self._pulse = True
        self.metrics.inc("pulses")
        # a pending clear is kept: the pulse ends one duration after it was first raised
        if self._pulse_handle is None:
            loop = asyncio.get_running_loop()
            self._pulse_handle = loop.call_later(self.pulse_duration_ms / 1000, self._clear_pulse)

    def _clear_pulse(self) -> None:
        self._pulse_handle = None
        if self._pulse:
            self._pulse = False
            self._notify()

    def _notify(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("ChainPulse listener failed")


__all__ = ["ChainPulse"]
