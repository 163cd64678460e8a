"""
Tests for the live navigation session: start rules, step advance, progress
and shutdown.
"""

import asyncio

import pytest

from safepath.exceptions import InvalidSessionStateError, PositionUnavailableError
from safepath.services.navigation import NavigationSession, SessionState
from safepath.services.position_stream import PositionChannel

from helpers import make_plan, north


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _started(settings, plan=None):
    session = NavigationSession(device_id="phone-1", settings=settings)
    stream = PositionChannel()
    await session.start(plan or make_plan(), stream)
    return session, stream


async def _drive(session, stream, *positions):
    for position in positions:
        stream.push(position)
    await session.wait_processed(session.positions_processed + len(positions))
    return session.progress()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestStart:

    def test_requires_route(self, settings):
        async def scenario():
            session = NavigationSession(settings=settings)
            await session.start(None, PositionChannel())

        with pytest.raises(InvalidSessionStateError):
            asyncio.run(scenario())

    def test_requires_location_access(self, settings):
        async def scenario():
            session = NavigationSession(settings=settings)
            try:
                await session.start(make_plan(), PositionChannel(available=False))
            finally:
                assert session.state == SessionState.IDLE

        with pytest.raises(PositionUnavailableError):
            asyncio.run(scenario())

    def test_closed_stream_rejected(self, settings):
        async def scenario():
            stream = PositionChannel()
            stream.close()
            await NavigationSession(settings=settings).start(make_plan(), stream)

        with pytest.raises(PositionUnavailableError):
            asyncio.run(scenario())

    def test_cannot_start_twice(self, settings):
        async def scenario():
            session, _ = await _started(settings)
            try:
                await session.start(make_plan(), PositionChannel())
            finally:
                await session.end()

        with pytest.raises(InvalidSessionStateError):
            asyncio.run(scenario())

    def test_active_after_start(self, settings):
        async def scenario():
            plan = make_plan()
            session, _ = await _started(settings, plan)
            state = session.state
            route_history = list(session.route_history)
            await session.end()
            return plan, state, route_history

        plan, state, route_history = asyncio.run(scenario())
        assert state == SessionState.ACTIVE
        assert route_history == [plan.id]


class TestProgress:

    def test_remaining_distance_and_time(self, settings):
        async def scenario():
            session, stream = await _started(settings)
            progress = await _drive(session, stream, north(500))
            await session.end()
            return progress

        progress = asyncio.run(scenario())
        assert progress.current_step_index == 0
        assert progress.distance_to_turn_m == pytest.approx(500, abs=0.1)
        assert progress.remaining_distance_m == pytest.approx(1500, abs=0.1)
        assert progress.remaining_minutes == pytest.approx(15.0, abs=0.01)
        assert progress.next_instruction == "Continue north"
        assert not progress.arrived

    def test_step_advances_near_turn(self, settings):
        async def scenario():
            session, stream = await _started(settings)
            progress = await _drive(session, stream, north(990))
            await session.end()
            return progress

        progress = asyncio.run(scenario())
        assert progress.current_step_index == 1
        assert progress.current_instruction == "Continue north"
        assert progress.remaining_distance_m == pytest.approx(1010, abs=0.1)
        assert progress.remaining_minutes == pytest.approx(10.0, abs=0.01)

    def test_far_from_turn_does_not_advance(self, settings):
        async def scenario():
            session, stream = await _started(settings)
            progress = await _drive(session, stream, north(950))
            await session.end()
            return progress

        assert asyncio.run(scenario()).current_step_index == 0

    def test_last_step_clamps_and_arrives(self, settings):
        async def scenario():
            session, stream = await _started(settings)
            await _drive(session, stream, north(995))
            progress = await _drive(session, stream, north(1995), north(2000))
            await session.end()
            return progress

        progress = asyncio.run(scenario())
        assert progress.current_step_index == 1
        assert progress.arrived
        assert progress.next_instruction is None

    def test_positions_processed_in_order(self, settings):
        async def scenario():
            session, stream = await _started(settings)
            seen = []

            async def listener(s, position):
                seen.append(position)

            session.add_listener(listener)
            positions = [north(d) for d in (100, 200, 300, 400)]
            await _drive(session, stream, *positions)
            await session.end()
            return positions, seen

        positions, seen = asyncio.run(scenario())
        assert seen == positions

    def test_failing_listener_does_not_stop_updates(self, settings):
        async def scenario():
            session, stream = await _started(settings)

            async def broken(s, position):
                raise RuntimeError("listener bug")

            session.add_listener(broken)
            await _drive(session, stream, north(100), north(200))
            processed = session.positions_processed
            position = session.position
            await session.end()
            return processed, position

        processed, position = asyncio.run(scenario())
        assert processed == 2
        assert position == north(200)


class TestRerouteStates:

    def test_begin_and_finish(self, settings):
        async def scenario():
            session, _ = await _started(settings)
            assert session.begin_reroute()
            assert session.state == SessionState.REROUTING
            # Only one reroute at a time
            assert not session.begin_reroute()

            replacement = make_plan()
            applied = await session.finish_reroute(replacement)
            result = (applied, session.state, session.active_route_id, replacement.id, len(session.route_history))
            await session.end()
            return result

        applied, state, active, expected, history = asyncio.run(scenario())
        assert applied
        assert state == SessionState.ACTIVE
        assert active == expected
        assert history == 2

    def test_finish_after_end_is_discarded(self, settings):
        async def scenario():
            session, _ = await _started(settings)
            original = session.active_route_id
            session.begin_reroute()
            await session.end()
            applied = await session.finish_reroute(make_plan())
            return applied, session.active_route_id, original

        applied, active, original = asyncio.run(scenario())
        assert not applied
        assert active == original


class TestEnd:

    def test_end_is_idempotent(self, settings):
        async def scenario():
            session, stream = await _started(settings)
            first = await session.end()
            second = await session.end()
            return first, second, session, stream

        first, second, session, stream = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert session.state == SessionState.ENDED
        assert session.ended_at is not None
        assert stream.closed

    def test_no_updates_after_end(self, settings):
        async def scenario():
            session, stream = await _started(settings)
            await session.end()
            return stream.push(north(10)), await session.update_position(north(10))

        pushed, progress = asyncio.run(scenario())
        assert not pushed
        assert progress is None

    def test_end_cancels_tracked_tasks(self, settings):
        async def scenario():
            session, _ = await _started(settings)
            task = session.track(asyncio.create_task(asyncio.sleep(60)))
            await session.end()
            return task

        assert asyncio.run(scenario()).cancelled()
