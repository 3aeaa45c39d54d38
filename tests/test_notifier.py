"""Tests for the notification outbox."""

import asyncio

from stakeit.services.notifier import Notifier


class TestNotifier:
    async def test_flush_delivers_in_order(self):
        received = []

        async def channel(event):
            received.append((event.kind, event.goal_id, event.payload))

        notifier = Notifier([channel])
        notifier.publish("period_settled", "goal-1", week=1, passed=True)
        notifier.publish("final_vote_opened", "goal-1")

        assert notifier.pending == 2
        assert await notifier.flush() == 2
        assert received == [
            ("period_settled", "goal-1", {"week": 1, "passed": True}),
            ("final_vote_opened", "goal-1", {}),
        ]
        assert notifier.pending == 0

    async def test_failing_channel_does_not_stop_others(self):
        received = []

        async def broken(event):
            raise RuntimeError("bot offline")

        async def healthy(event):
            received.append(event.kind)

        notifier = Notifier([broken, healthy])
        notifier.publish("goal_completed", "goal-1")

        await notifier.flush()

        assert received == ["goal_completed"]

    async def test_background_worker(self):
        delivered = asyncio.Event()

        async def channel(event):
            delivered.set()

        notifier = Notifier([channel])
        notifier.start()
        notifier.publish("goal_activated", "goal-1")

        await asyncio.wait_for(delivered.wait(), timeout=1)
        await notifier.stop()
