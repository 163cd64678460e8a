"""
Tests for off-route detection and the rerouter: one request per session,
the shared concurrency cap, failure fallback and results for ended sessions.
"""

import asyncio

import pytest

from safepath.services.navigation import NavigationSession, SessionState
from safepath.services.position_stream import PositionChannel
from safepath.services.rerouter import CONTINUE_ON_CURRENT_ROUTE, DeviationDetector, Rerouter

from helpers import FakeSelector, east, make_plan, north


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _session(settings):
    session = NavigationSession(device_id="phone-1", settings=settings)
    await session.start(make_plan(), PositionChannel())
    return session


class _Recorder:
    def __init__(self):
        self.outcomes = []

    async def __call__(self, session, outcome):
        self.outcomes.append(outcome)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestDeviationDetector:

    def test_threshold(self, settings):
        async def scenario():
            session = await _session(settings)
            detector = DeviationDetector(settings)
            result = (
                detector.distance_off_route(session, east(300, north(500))),
                detector.is_off_route(session, east(50, north(500))),
                detector.is_off_route(session, east(150, north(500))),
            )
            await session.end()
            return result

        distance, near, far = asyncio.run(scenario())
        assert distance == pytest.approx(300, abs=0.5)
        assert not near
        assert far


class TestRerouter:

    def test_off_route_triggers_reroute(self, settings):
        recorder = _Recorder()

        async def scenario():
            session = await _session(settings)
            original = session.active_route_id
            session.current_step_index = 1
            rerouter = Rerouter(FakeSelector(), settings=settings, on_result=recorder)

            task = await rerouter.check(session, east(300, north(500)))
            state_during = session.state
            outcome = await task
            result = (original, state_during, outcome, session.state, session.current_step_index, session.active_route_id)
            await session.end()
            return result

        original, state_during, outcome, state_after, step, active = asyncio.run(scenario())
        assert state_during == SessionState.REROUTING
        assert outcome.rerouted
        assert outcome.route.id == active
        assert active != original
        assert state_after == SessionState.ACTIVE
        assert step == 0
        assert recorder.outcomes == [outcome]

    def test_on_route_does_nothing(self, settings):
        async def scenario():
            session = await _session(settings)
            selector = FakeSelector()
            task = await Rerouter(selector, settings=settings).check(session, east(50, north(500)))
            await session.end()
            return task, selector.calls

        task, calls = asyncio.run(scenario())
        assert task is None
        assert calls == 0

    def test_one_pending_request_per_session(self, settings):
        async def scenario():
            session = await _session(settings)
            gate = asyncio.Event()
            selector = FakeSelector(gate=gate)
            rerouter = Rerouter(selector, settings=settings)

            first = await rerouter.check(session, east(300, north(500)))
            await asyncio.sleep(0)
            second = await rerouter.check(session, east(400, north(500)))
            forced = rerouter.request(session, force=True)
            pending = rerouter.has_pending(session.session_id)

            gate.set()
            await first
            result = (first is not None, second, forced, pending, selector.calls, rerouter.has_pending(session.session_id))
            await session.end()
            return result

        started, second, forced, pending, calls, still_pending = asyncio.run(scenario())
        assert started
        assert second is None
        assert forced is None
        assert pending
        assert calls == 1
        assert not still_pending

    def test_failure_keeps_current_route(self, settings):
        recorder = _Recorder()

        async def scenario():
            session = await _session(settings)
            original = session.active_route_id
            rerouter = Rerouter(FakeSelector(fail=True), settings=settings, on_result=recorder)

            outcome = await rerouter.request(session, east(300, north(500)))
            result = (original, session.active_route_id, session.state, outcome)
            await session.end()
            return result

        original, active, state, outcome = asyncio.run(scenario())
        assert active == original
        assert state == SessionState.ACTIVE
        assert not outcome.rerouted
        assert outcome.message == CONTINUE_ON_CURRENT_ROUTE
        assert recorder.outcomes == [outcome]

    def test_forced_request_skips_threshold(self, settings):
        async def scenario():
            session = await _session(settings)
            rerouter = Rerouter(FakeSelector(), settings=settings)
            unforced = rerouter.request(session, north(500))
            forced = rerouter.request(session, north(500), force=True)
            outcome = await forced
            await session.end()
            return unforced, outcome

        unforced, outcome = asyncio.run(scenario())
        assert unforced is None
        assert outcome.rerouted

    def test_session_ended_while_request_in_flight(self, settings):
        recorder = _Recorder()

        async def scenario():
            session = await _session(settings)
            original = session.active_route_id
            gate = asyncio.Event()
            rerouter = Rerouter(FakeSelector(gate=gate), settings=settings, on_result=recorder)

            task = rerouter.request(session, east(300, north(500)))
            await asyncio.sleep(0)
            await session.end()
            gate.set()
            return task, original, session.active_route_id, rerouter.has_pending(session.session_id)

        task, original, active, pending = asyncio.run(scenario())
        assert task.cancelled()
        assert active == original
        assert not pending
        assert recorder.outcomes == []

    def test_concurrent_requests_are_capped(self, settings):
        async def scenario():
            gate = asyncio.Event()
            selector = FakeSelector(gate=gate)
            rerouter = Rerouter(selector, asyncio.Semaphore(3), settings=settings)
            sessions = [await _session(settings) for _ in range(5)]

            tasks = [rerouter.request(s, east(300, north(500))) for s in sessions]
            for _ in range(5):
                await asyncio.sleep(0)
            peak_before_release = selector.max_in_flight

            gate.set()
            outcomes = await asyncio.gather(*tasks)
            for s in sessions:
                await s.end()
            return peak_before_release, selector.max_in_flight, outcomes

        peak_before_release, peak, outcomes = asyncio.run(scenario())
        assert peak_before_release == 3
        assert peak == 3
        assert all(o.rerouted for o in outcomes)
