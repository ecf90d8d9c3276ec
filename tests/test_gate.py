"""Unit tests for the cooldown gate."""

import asyncio

import pytest

from skindoc.processing.gate import CooldownGate

from conftest import FakeClock


class TestCooldown:
    @pytest.mark.asyncio
    async def test_first_firing_runs(self, clock: FakeClock) -> None:
        gate = CooldownGate("acne_detected", clock=clock)
        calls = []

        assert gate.fire(lambda: calls.append(1)) is True
        assert calls == [1]
        assert gate.in_flight is True
        assert gate.last_fired_at == clock.now

    @pytest.mark.asyncio
    async def test_within_window_is_discarded(self, clock: FakeClock) -> None:
        gate = CooldownGate("acne_detected", window=30.0, settle=0, clock=clock)
        calls = []

        gate.fire(lambda: calls.append(1))
        clock.advance(29.9)
        assert gate.fire(lambda: calls.append(2)) is False

        assert calls == [1]
        assert gate.discarded == 1

    @pytest.mark.asyncio
    async def test_after_window_fires_again(self, clock: FakeClock) -> None:
        gate = CooldownGate("acne_detected", window=30.0, settle=0, clock=clock)
        calls = []

        gate.fire(lambda: calls.append(1))
        clock.advance(30.0)
        assert gate.fire(lambda: calls.append(2)) is True

        assert calls == [1, 2]

    @pytest.mark.asyncio
    async def test_ready(self, clock: FakeClock) -> None:
        gate = CooldownGate("acne_detected", window=10.0, settle=0, clock=clock)
        assert gate.ready()
        gate.fire(lambda: None)
        assert not gate.ready()
        clock.advance(10)
        assert gate.ready()


class TestInFlight:
    @pytest.mark.asyncio
    async def test_in_flight_discards_even_after_window(self, clock: FakeClock) -> None:
        """The in-flight flag blocks independently of the window."""
        gate = CooldownGate("acne_detected", window=0.0, settle=0.05, clock=clock)
        calls = []

        gate.fire(lambda: calls.append(1))
        assert gate.fire(lambda: calls.append(2)) is False

        await asyncio.sleep(0.1)
        assert gate.in_flight is False
        assert gate.fire(lambda: calls.append(3)) is True
        assert calls == [1, 3]

    @pytest.mark.asyncio
    async def test_settle_release_is_scheduled(self, clock: FakeClock) -> None:
        gate = CooldownGate("acne_detected", settle=0.05, clock=clock)

        gate.fire(lambda: None)
        assert gate.in_flight is True

        await asyncio.sleep(0.1)
        assert gate.in_flight is False

    @pytest.mark.asyncio
    async def test_exception_releases_immediately(self, clock: FakeClock) -> None:
        """A failing action never wedges the gate."""
        gate = CooldownGate("acne_detected", settle=5.0, clock=clock)

        def boom() -> None:
            raise RuntimeError("send failed")

        with pytest.raises(RuntimeError):
            gate.fire(boom)

        assert gate.in_flight is False
        assert gate.last_fired_at == clock.now
        assert gate.fired == 0

    @pytest.mark.asyncio
    async def test_release_cancels_pending_timer(self, clock: FakeClock) -> None:
        gate = CooldownGate("acne_detected", window=0.0, settle=10.0, clock=clock)

        gate.fire(lambda: None)
        gate.release()

        assert gate.in_flight is False
        assert gate.fire(lambda: None) is True

    def test_zero_settle_needs_no_loop(self, clock: FakeClock) -> None:
        gate = CooldownGate("acne_detected", settle=0, clock=clock)

        assert gate.fire(lambda: None) is True
        assert gate.in_flight is False

    def test_settle_without_loop_releases_immediately(self, clock: FakeClock) -> None:
        """Fired off the event loop: the reply goes out and the gate is not wedged."""
        gate = CooldownGate("acne_detected", window=0, settle=2, clock=clock)
        sent = []

        assert gate.fire(lambda: sent.append(1)) is True
        assert sent == [1]
        assert gate.fired == 1
        assert gate.in_flight is False
        assert gate.fire(lambda: sent.append(2)) is True
