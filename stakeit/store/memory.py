"""In-process goal store for development and tests.

Each goal owns an ``asyncio.Lock``; every read-modify-write on a goal's
rows happens under it, so the uniqueness and compare-and-swap guarantees
of ``GoalStore`` hold for concurrent coroutines.
"""

import asyncio
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Optional

from stakeit.errors import DuplicateVote, LimitExceeded, NotFound
from stakeit.models.goal import (
    Goal, GoalStatus, OPEN_STATUSES, PenaltyType, Platform, ProgressUpdate, Referee
)
from stakeit.models.payment import Payment, PaymentStatus
from stakeit.models.verification import ZkVerification
from stakeit.models.vote import Vote, WeeklyResult
from stakeit.store.base import GoalStore


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryGoalStore(GoalStore):
    """Dict-backed ``GoalStore``."""

    def __init__(self) -> None:
        self._goals: dict[str, dict[str, Any]] = {}
        self._referees: dict[tuple[str, str, str], Referee] = {}
        self._votes: dict[tuple[str, str, int], Vote] = {}
        self._weekly: dict[tuple[str, int], WeeklyResult] = {}
        self._ballots: dict[str, dict[str, bool]] = defaultdict(dict)
        self._zk: dict[tuple[str, int], ZkVerification] = {}
        self._payments: dict[str, Payment] = {}
        self._progress: dict[str, list[ProgressUpdate]] = defaultdict(list)
        self._goal_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._group_locks: dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    def _lock(self, goal_id: str) -> asyncio.Lock:
        return self._goal_locks[goal_id]

    # Goals

    async def create_goal_within_limit(
        self,
        row: dict[str, Any],
        referees: list[dict[str, Any]],
        limit: int,
    ) -> Goal:
        group_key = (row["user_id"], row.get("group_id") or "")
        async with self._group_locks[group_key]:
            if row.get("group_id"):
                open_count = sum(
                    1 for g in self._goals.values()
                    if g["user_id"] == row["user_id"]
                    and g.get("group_id") == row["group_id"]
                    and g["status"] in OPEN_STATUSES
                )
                if open_count >= limit:
                    raise LimitExceeded(
                        f"Maximum {limit} active goals per group. "
                        "Complete or wait for existing goals to finish."
                    )

            now = _now()
            goal_id = str(uuid.uuid4())
            stored = {
                **row,
                "id": goal_id,
                "version": 0,
                "created_at": now,
                "updated_at": now,
            }
            goal = Goal(**stored)
            self._goals[goal_id] = goal.model_dump()

        for ref in referees:
            await self.get_or_create_referee(
                goal_id, ref["user_id"], ref["user_name"], Platform(ref["platform"])
            )
        return goal

    async def get_goal(self, goal_id: str) -> Optional[Goal]:
        row = self._goals.get(goal_id)
        return Goal(**row) if row else None

    async def list_goals_by_user(self, user_id: str) -> list[Goal]:
        goals = [Goal(**g) for g in self._goals.values() if g["user_id"] == user_id]
        return sorted(goals, key=lambda g: g.created_at, reverse=True)

    async def list_goals_by_group(self, platform: str, group_id: str) -> list[Goal]:
        goals = [
            Goal(**g) for g in self._goals.values()
            if g["platform"] == platform and g.get("group_id") == group_id
        ]
        return sorted(goals, key=lambda g: g.created_at, reverse=True)

    async def update_goal_if_version(
        self, goal_id: str, expected_version: int, updates: dict[str, Any]
    ) -> Optional[Goal]:
        async with self._lock(goal_id):
            row = self._goals.get(goal_id)
            if row is None:
                raise NotFound("Goal not found")
            if row["version"] != expected_version:
                return None
            row.update(updates)
            row["version"] = expected_version + 1
            row["updated_at"] = _now()
            return Goal(**row)

    async def update_goal(self, goal_id: str, updates: dict[str, Any]) -> Goal:
        async with self._lock(goal_id):
            row = self._goals.get(goal_id)
            if row is None:
                raise NotFound("Goal not found")
            row.update(updates)
            row["updated_at"] = _now()
            return Goal(**row)

    async def delete_goal(self, goal_id: str) -> None:
        async with self._lock(goal_id):
            self._goals.pop(goal_id, None)
            for key in [k for k in self._referees if k[0] == goal_id]:
                del self._referees[key]

    async def list_frozen_goals(self, user_id: str) -> list[Goal]:
        return [
            Goal(**g) for g in self._goals.values()
            if g["user_id"] == user_id
            and g["status"] == GoalStatus.FAILED
            and g["penalty_type"] == PenaltyType.DELAYED_REFUND
            and g.get("frozen_until") is not None
            and g.get("frozen_consumed_by") is None
        ]

    # Referees

    async def get_or_create_referee(
        self, goal_id: str, user_id: str, user_name: str, platform: Platform
    ) -> Referee:
        key = (goal_id, user_id, Platform(platform).value)
        async with self._lock(goal_id):
            existing = self._referees.get(key)
            if existing:
                return existing
            referee = Referee(
                id=str(uuid.uuid4()),
                goal_id=goal_id,
                user_id=user_id,
                user_name=user_name,
                platform=platform,
                added_at=_now(),
            )
            self._referees[key] = referee
            return referee

    async def list_referees(self, goal_id: str) -> list[Referee]:
        return [r for key, r in self._referees.items() if key[0] == goal_id]

    # Votes

    async def insert_vote(
        self, goal_id: str, referee_id: str, week: int, vote: bool
    ) -> Vote:
        key = (goal_id, referee_id, week)
        async with self._lock(goal_id):
            if key in self._votes:
                raise DuplicateVote("Already voted for this week")
            record = Vote(
                id=str(uuid.uuid4()),
                goal_id=goal_id,
                referee_id=referee_id,
                week_number=week,
                vote=vote,
                voted_at=_now(),
            )
            self._votes[key] = record
            return record

    async def list_votes(self, goal_id: str, week: Optional[int] = None) -> list[Vote]:
        return [
            v for (g, _, w), v in self._votes.items()
            if g == goal_id and (week is None or w == week)
        ]

    # Weekly results

    async def get_or_create_weekly_result(
        self, goal_id: str, week: int, total_referees: int
    ) -> WeeklyResult:
        async with self._lock(goal_id):
            key = (goal_id, week)
            if key not in self._weekly:
                self._weekly[key] = WeeklyResult(
                    goal_id=goal_id,
                    week_number=week,
                    total_referees=total_referees,
                    verification_sent_at=_now(),
                )
            return self._weekly[key]

    async def get_weekly_result(self, goal_id: str, week: int) -> Optional[WeeklyResult]:
        return self._weekly.get((goal_id, week))

    async def update_weekly_counts(
        self, goal_id: str, week: int, yes_votes: int, no_votes: int, total_referees: int
    ) -> WeeklyResult:
        async with self._lock(goal_id):
            key = (goal_id, week)
            current = self._weekly.get(key)
            if current is None:
                raise NotFound(f"No result for week {week}")
            updated = current.model_copy(update={
                "yes_votes": yes_votes,
                "no_votes": no_votes,
                "total_referees": total_referees,
            })
            self._weekly[key] = updated
            return updated

    async def resolve_weekly_result(self, goal_id: str, week: int, passed: bool) -> bool:
        async with self._lock(goal_id):
            key = (goal_id, week)
            current = self._weekly.get(key)
            if current is None:
                raise NotFound(f"No result for week {week}")
            if current.finalized_at is not None:
                return False
            self._weekly[key] = current.model_copy(update={
                "passed": passed,
                "finalized_at": _now(),
            })
            return True

    async def reopen_weekly_result(self, goal_id: str, week: int) -> None:
        async with self._lock(goal_id):
            key = (goal_id, week)
            current = self._weekly.get(key)
            if current is not None:
                self._weekly[key] = current.model_copy(update={
                    "passed": None,
                    "finalized_at": None,
                })

    async def list_weekly_results(self, goal_id: str) -> list[WeeklyResult]:
        results = [r for (g, _), r in self._weekly.items() if g == goal_id]
        return sorted(results, key=lambda r: r.week_number)

    # Final ballots

    async def insert_final_ballot(self, goal_id: str, referee_id: str, vote: bool) -> None:
        async with self._lock(goal_id):
            ballots = self._ballots[goal_id]
            if referee_id in ballots:
                raise DuplicateVote("Already voted in the final vote")
            ballots[referee_id] = vote

    async def list_final_ballots(self, goal_id: str) -> dict[str, bool]:
        return dict(self._ballots.get(goal_id, {}))

    async def clear_final_ballots(self, goal_id: str) -> None:
        async with self._lock(goal_id):
            self._ballots.pop(goal_id, None)

    # zkTLS verifications

    async def upsert_zk_verification(
        self, goal_id: str, week: int, fields: dict[str, Any]
    ) -> ZkVerification:
        async with self._lock(goal_id):
            key = (goal_id, week)
            current = self._zk.get(key) or ZkVerification(goal_id=goal_id, week_number=week)
            updated = current.model_copy(update=fields)
            self._zk[key] = updated
            return updated

    async def get_zk_verification(self, goal_id: str, week: int) -> Optional[ZkVerification]:
        return self._zk.get((goal_id, week))

    # Payments

    async def create_payment(
        self, goal_id: str, amount: int, qr_code_url: str, charge_id: str
    ) -> Payment:
        payment = Payment(
            id=str(uuid.uuid4()),
            goal_id=goal_id,
            charge_id=charge_id,
            amount=amount,
            qr_code_url=qr_code_url,
            created_at=_now(),
        )
        self._payments[payment.id] = payment
        await self.update_goal(goal_id, {
            "payment_id": payment.id,
            "payment_qr_url": qr_code_url,
        })
        return payment

    async def get_payment_by_charge(self, charge_id: str) -> Optional[Payment]:
        for payment in self._payments.values():
            if payment.charge_id == charge_id:
                return payment
        return None

    async def complete_payment(self, charge_id: str) -> Optional[Payment]:
        for payment_id, payment in self._payments.items():
            if payment.charge_id != charge_id:
                continue
            if payment.status == PaymentStatus.PENDING:
                payment = payment.model_copy(update={
                    "status": PaymentStatus.COMPLETED,
                    "completed_at": _now(),
                })
                self._payments[payment_id] = payment
            return payment
        return None

    # Progress updates

    async def create_progress_update(self, goal_id: str, fields: dict[str, Any]) -> ProgressUpdate:
        update = ProgressUpdate(
            id=str(uuid.uuid4()),
            goal_id=goal_id,
            created_at=_now(),
            **fields,
        )
        self._progress[goal_id].append(update)
        return update

    async def list_progress_updates(self, goal_id: str) -> list[ProgressUpdate]:
        return list(self._progress.get(goal_id, []))
