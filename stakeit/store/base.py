"""Persistence gateway contract.

Services talk to storage only through ``GoalStore``. Implementations
must provide three guarantees the settlement engine relies on:

* ``update_goal_if_version`` is a compare-and-swap on ``version`` and
  bumps it on success.
* Votes, final ballots, referees and weekly results are unique per key;
  a second insert raises ``DuplicateVote`` (votes, ballots) or returns the
  existing row (referees, weekly results).
* ``resolve_weekly_result`` stamps ``finalized_at`` at most once;
  ``reopen_weekly_result`` undoes it when the period could not be
  credited to the goal.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from stakeit.models.goal import Goal, Referee, ProgressUpdate, Platform
from stakeit.models.payment import Payment
from stakeit.models.verification import ZkVerification
from stakeit.models.vote import Vote, WeeklyResult


class GoalStore(ABC):
    """Transactional CRUD over goals and their adjudication records."""

    # Goals

    @abstractmethod
    async def create_goal_within_limit(
        self,
        row: dict[str, Any],
        referees: list[dict[str, Any]],
        limit: int,
    ) -> Goal:
        """Insert a goal and its referees unless the owner already has
        ``limit`` open goals in the same group. Raises ``LimitExceeded``."""

    @abstractmethod
    async def get_goal(self, goal_id: str) -> Optional[Goal]: ...

    @abstractmethod
    async def list_goals_by_user(self, user_id: str) -> list[Goal]: ...

    @abstractmethod
    async def list_goals_by_group(self, platform: str, group_id: str) -> list[Goal]: ...

    @abstractmethod
    async def update_goal_if_version(
        self, goal_id: str, expected_version: int, updates: dict[str, Any]
    ) -> Optional[Goal]:
        """Apply ``updates`` iff the stored version matches. Returns the
        updated goal, or None when another writer got there first."""

    @abstractmethod
    async def update_goal(self, goal_id: str, updates: dict[str, Any]) -> Goal:
        """Unconditional update for fields no engine races on."""

    @abstractmethod
    async def delete_goal(self, goal_id: str) -> None: ...

    @abstractmethod
    async def list_frozen_goals(self, user_id: str) -> list[Goal]:
        """Failed delayed-refund goals whose balance was not yet restaked."""

    # Referees

    @abstractmethod
    async def get_or_create_referee(
        self, goal_id: str, user_id: str, user_name: str, platform: Platform
    ) -> Referee: ...

    @abstractmethod
    async def list_referees(self, goal_id: str) -> list[Referee]: ...

    # Votes

    @abstractmethod
    async def insert_vote(
        self, goal_id: str, referee_id: str, week: int, vote: bool
    ) -> Vote: ...

    @abstractmethod
    async def list_votes(self, goal_id: str, week: Optional[int] = None) -> list[Vote]: ...

    # Weekly results

    @abstractmethod
    async def get_or_create_weekly_result(
        self, goal_id: str, week: int, total_referees: int
    ) -> WeeklyResult: ...

    @abstractmethod
    async def get_weekly_result(self, goal_id: str, week: int) -> Optional[WeeklyResult]: ...

    @abstractmethod
    async def update_weekly_counts(
        self, goal_id: str, week: int, yes_votes: int, no_votes: int, total_referees: int
    ) -> WeeklyResult: ...

    @abstractmethod
    async def resolve_weekly_result(self, goal_id: str, week: int, passed: bool) -> bool:
        """Set ``passed`` and ``finalized_at`` if still unresolved.
        Returns True only for the call that resolved it."""

    @abstractmethod
    async def reopen_weekly_result(self, goal_id: str, week: int) -> None:
        """Clear ``passed`` and ``finalized_at`` so the period can resolve again."""

    @abstractmethod
    async def list_weekly_results(self, goal_id: str) -> list[WeeklyResult]: ...

    # Final ballots

    @abstractmethod
    async def insert_final_ballot(self, goal_id: str, referee_id: str, vote: bool) -> None: ...

    @abstractmethod
    async def list_final_ballots(self, goal_id: str) -> dict[str, bool]: ...

    @abstractmethod
    async def clear_final_ballots(self, goal_id: str) -> None: ...

    # zkTLS verifications

    @abstractmethod
    async def upsert_zk_verification(
        self, goal_id: str, week: int, fields: dict[str, Any]
    ) -> ZkVerification: ...

    @abstractmethod
    async def get_zk_verification(self, goal_id: str, week: int) -> Optional[ZkVerification]: ...

    # Payments

    @abstractmethod
    async def create_payment(
        self, goal_id: str, amount: int, qr_code_url: str, charge_id: str
    ) -> Payment: ...

    @abstractmethod
    async def get_payment_by_charge(self, charge_id: str) -> Optional[Payment]: ...

    @abstractmethod
    async def complete_payment(self, charge_id: str) -> Optional[Payment]:
        """Mark a pending payment completed. Idempotent; None if unknown."""

    # Progress updates

    @abstractmethod
    async def create_progress_update(self, goal_id: str, fields: dict[str, Any]) -> ProgressUpdate: ...

    @abstractmethod
    async def list_progress_updates(self, goal_id: str) -> list[ProgressUpdate]: ...
