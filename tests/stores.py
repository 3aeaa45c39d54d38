"""In-memory stores with injectable write failures."""

from stakeit.errors import UpstreamFailure
from stakeit.store.memory import InMemoryGoalStore


class FlakyStore(InMemoryGoalStore):
    """
    ``lost_swaps``: that many versioned goal updates report a conflict
    without writing. ``fail_updates``: unversioned goal updates raise.
    """

    def __init__(self):
        super().__init__()
        self.lost_swaps = 0
        self.fail_updates = False

    async def update_goal_if_version(self, goal_id, expected_version, updates):
        if self.lost_swaps > 0:
            self.lost_swaps -= 1
            return None
        return await super().update_goal_if_version(goal_id, expected_version, updates)

    async def update_goal(self, goal_id, updates):
        if self.fail_updates:
            raise UpstreamFailure("Storage unavailable")
        return await super().update_goal(goal_id, updates)
