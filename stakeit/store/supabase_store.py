"""Supabase-backed goal store.

Concurrency relies on the constraints declared in ``sql/schema.sql``:
unique indexes on votes, final ballots, referees and weekly results, and
a ``version`` column on goals used as a compare-and-swap token.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from postgrest.exceptions import APIError
from supabase import Client

from stakeit.errors import DuplicateVote, LimitExceeded, NotFound
from stakeit.logging_config import get_logger
from stakeit.models.goal import (
    Goal, GoalStatus, OPEN_STATUSES, PenaltyType, Platform, ProgressUpdate, Referee
)
from stakeit.models.payment import Payment, PaymentStatus
from stakeit.models.verification import ZkVerification
from stakeit.models.vote import Vote, WeeklyResult
from stakeit.store.base import GoalStore

logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialize(values: dict[str, Any]) -> dict[str, Any]:
    """Turn enums and datetimes into JSON-friendly values."""
    out = {}
    for key, value in values.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        out[key] = value
    return out


def _is_unique_violation(error: APIError) -> bool:
    return getattr(error, "code", None) == UNIQUE_VIOLATION


class SupabaseGoalStore(GoalStore):
    """``GoalStore`` over the Supabase PostgREST API."""

    def __init__(self, client: Client):
        self._client = client

    def _table(self, name: str):
        return self._client.table(name)

    # Goals

    async def create_goal_within_limit(
        self,
        row: dict[str, Any],
        referees: list[dict[str, Any]],
        limit: int,
    ) -> Goal:
        open_statuses = [s.value for s in OPEN_STATUSES]

        if row.get("group_id"):
            # Reject early without writing
            existing = self._table("goals").select("id", count="exact").eq(
                "user_id", row["user_id"]
            ).eq("group_id", row["group_id"]).in_("status", open_statuses).execute()
            if (existing.count or 0) >= limit:
                raise LimitExceeded(
                    f"Maximum {limit} active goals per group. "
                    "Complete or wait for existing goals to finish."
                )

        result = self._table("goals").insert(_serialize({**row, "version": 0})).execute()
        if not result.data:
            raise NotFound("Failed to create goal")
        goal = Goal(**result.data[0])

        if goal.group_id:
            # Oldest ``limit`` open goals win; a later insert is removed again
            rows = self._table("goals").select("id, created_at").eq(
                "user_id", goal.user_id
            ).eq("group_id", goal.group_id).in_("status", open_statuses).order(
                "created_at"
            ).order("id").execute()
            allowed = [r["id"] for r in rows.data[:limit]]
            if goal.id not in allowed:
                logger.warning("goal_limit_race_lost", goal_id=goal.id, user_id=goal.user_id)
                self._table("goals").delete().eq("id", goal.id).execute()
                raise LimitExceeded(
                    f"Maximum {limit} active goals per group. "
                    "Complete or wait for existing goals to finish."
                )

        for ref in referees:
            await self.get_or_create_referee(
                goal.id, ref["user_id"], ref["user_name"], Platform(ref["platform"])
            )
        return goal

    async def get_goal(self, goal_id: str) -> Optional[Goal]:
        result = self._table("goals").select("*").eq("id", goal_id).limit(1).execute()
        return Goal(**result.data[0]) if result.data else None

    async def list_goals_by_user(self, user_id: str) -> list[Goal]:
        result = self._table("goals").select("*").eq(
            "user_id", user_id
        ).order("created_at", desc=True).execute()
        return [Goal(**g) for g in result.data]

    async def list_goals_by_group(self, platform: str, group_id: str) -> list[Goal]:
        result = self._table("goals").select("*").eq(
            "platform", platform
        ).eq("group_id", group_id).order("created_at", desc=True).execute()
        return [Goal(**g) for g in result.data]

    async def update_goal_if_version(
        self, goal_id: str, expected_version: int, updates: dict[str, Any]
    ) -> Optional[Goal]:
        payload = _serialize({
            **updates,
            "version": expected_version + 1,
            "updated_at": _now(),
        })
        result = self._table("goals").update(payload).eq(
            "id", goal_id
        ).eq("version", expected_version).execute()
        if not result.data:
            return None
        return Goal(**result.data[0])

    async def update_goal(self, goal_id: str, updates: dict[str, Any]) -> Goal:
        payload = _serialize({**updates, "updated_at": _now()})
        result = self._table("goals").update(payload).eq("id", goal_id).execute()
        if not result.data:
            raise NotFound("Goal not found")
        return Goal(**result.data[0])

    async def delete_goal(self, goal_id: str) -> None:
        self._table("referees").delete().eq("goal_id", goal_id).execute()
        self._table("goals").delete().eq("id", goal_id).execute()

    async def list_frozen_goals(self, user_id: str) -> list[Goal]:
        result = self._table("goals").select("*").eq(
            "user_id", user_id
        ).eq("status", GoalStatus.FAILED.value).eq(
            "penalty_type", PenaltyType.DELAYED_REFUND.value
        ).not_.is_("frozen_until", "null").is_("frozen_consumed_by", "null").execute()
        return [Goal(**g) for g in result.data]

    # Referees

    async def get_or_create_referee(
        self, goal_id: str, user_id: str, user_name: str, platform: Platform
    ) -> Referee:
        platform = Platform(platform).value
        try:
            result = self._table("referees").insert({
                "goal_id": goal_id,
                "user_id": user_id,
                "user_name": user_name,
                "platform": platform,
                "added_at": _now(),
            }).execute()
            return Referee(**result.data[0])
        except APIError as e:
            if not _is_unique_violation(e):
                raise
        existing = self._table("referees").select("*").eq(
            "goal_id", goal_id
        ).eq("user_id", user_id).eq("platform", platform).limit(1).execute()
        return Referee(**existing.data[0])

    async def list_referees(self, goal_id: str) -> list[Referee]:
        result = self._table("referees").select("*").eq("goal_id", goal_id).execute()
        return [Referee(**r) for r in result.data]

    # Votes

    async def insert_vote(
        self, goal_id: str, referee_id: str, week: int, vote: bool
    ) -> Vote:
        try:
            result = self._table("votes").insert({
                "goal_id": goal_id,
                "referee_id": referee_id,
                "week_number": week,
                "vote": vote,
                "voted_at": _now(),
            }).execute()
        except APIError as e:
            if _is_unique_violation(e):
                raise DuplicateVote("Already voted for this week") from e
            raise
        return Vote(**result.data[0])

    async def list_votes(self, goal_id: str, week: Optional[int] = None) -> list[Vote]:
        query = self._table("votes").select("*").eq("goal_id", goal_id)
        if week is not None:
            query = query.eq("week_number", week)
        result = query.execute()
        return [Vote(**v) for v in result.data]

    # Weekly results

    async def get_or_create_weekly_result(
        self, goal_id: str, week: int, total_referees: int
    ) -> WeeklyResult:
        try:
            result = self._table("weekly_results").insert({
                "goal_id": goal_id,
                "week_number": week,
                "total_referees": total_referees,
                "verification_sent_at": _now(),
            }).execute()
            return WeeklyResult(**result.data[0])
        except APIError as e:
            if not _is_unique_violation(e):
                raise
        existing = await self.get_weekly_result(goal_id, week)
        if existing is None:
            raise NotFound(f"No result for week {week}")
        return existing

    async def get_weekly_result(self, goal_id: str, week: int) -> Optional[WeeklyResult]:
        result = self._table("weekly_results").select("*").eq(
            "goal_id", goal_id
        ).eq("week_number", week).limit(1).execute()
        return WeeklyResult(**result.data[0]) if result.data else None

    async def update_weekly_counts(
        self, goal_id: str, week: int, yes_votes: int, no_votes: int, total_referees: int
    ) -> WeeklyResult:
        result = self._table("weekly_results").update({
            "yes_votes": yes_votes,
            "no_votes": no_votes,
            "total_referees": total_referees,
        }).eq("goal_id", goal_id).eq("week_number", week).execute()
        if not result.data:
            raise NotFound(f"No result for week {week}")
        return WeeklyResult(**result.data[0])

    async def resolve_weekly_result(self, goal_id: str, week: int, passed: bool) -> bool:
        result = self._table("weekly_results").update({
            "passed": passed,
            "finalized_at": _now(),
        }).eq("goal_id", goal_id).eq("week_number", week).is_(
            "finalized_at", "null"
        ).execute()
        return bool(result.data)

    async def reopen_weekly_result(self, goal_id: str, week: int) -> None:
        self._table("weekly_results").update({
            "passed": None,
            "finalized_at": None,
        }).eq("goal_id", goal_id).eq("week_number", week).execute()

    async def list_weekly_results(self, goal_id: str) -> list[WeeklyResult]:
        result = self._table("weekly_results").select("*").eq(
            "goal_id", goal_id
        ).order("week_number").execute()
        return [WeeklyResult(**r) for r in result.data]

    # Final ballots

    async def insert_final_ballot(self, goal_id: str, referee_id: str, vote: bool) -> None:
        try:
            self._table("final_votes").insert({
                "goal_id": goal_id,
                "referee_id": referee_id,
                "vote": vote,
                "voted_at": _now(),
            }).execute()
        except APIError as e:
            if _is_unique_violation(e):
                raise DuplicateVote("Already voted in the final vote") from e
            raise

    async def list_final_ballots(self, goal_id: str) -> dict[str, bool]:
        result = self._table("final_votes").select("referee_id, vote").eq(
            "goal_id", goal_id
        ).execute()
        return {b["referee_id"]: b["vote"] for b in result.data}

    async def clear_final_ballots(self, goal_id: str) -> None:
        self._table("final_votes").delete().eq("goal_id", goal_id).execute()

    # zkTLS verifications

    async def upsert_zk_verification(
        self, goal_id: str, week: int, fields: dict[str, Any]
    ) -> ZkVerification:
        payload = _serialize({**fields, "goal_id": goal_id, "week_number": week})
        result = self._table("zk_verifications").upsert(
            payload, on_conflict="goal_id,week_number"
        ).execute()
        return ZkVerification(**result.data[0])

    async def get_zk_verification(self, goal_id: str, week: int) -> Optional[ZkVerification]:
        result = self._table("zk_verifications").select("*").eq(
            "goal_id", goal_id
        ).eq("week_number", week).limit(1).execute()
        return ZkVerification(**result.data[0]) if result.data else None

    # Payments

    async def create_payment(
        self, goal_id: str, amount: int, qr_code_url: str, charge_id: str
    ) -> Payment:
        result = self._table("payments").insert({
            "goal_id": goal_id,
            "amount": amount,
            "qr_code_url": qr_code_url,
            "charge_id": charge_id,
            "status": PaymentStatus.PENDING.value,
            "created_at": _now(),
        }).execute()
        payment = Payment(**result.data[0])
        await self.update_goal(goal_id, {
            "payment_id": payment.id,
            "payment_qr_url": qr_code_url,
        })
        return payment

    async def get_payment_by_charge(self, charge_id: str) -> Optional[Payment]:
        result = self._table("payments").select("*").eq(
            "charge_id", charge_id
        ).limit(1).execute()
        return Payment(**result.data[0]) if result.data else None

    async def complete_payment(self, charge_id: str) -> Optional[Payment]:
        self._table("payments").update({
            "status": PaymentStatus.COMPLETED.value,
            "completed_at": _now(),
        }).eq("charge_id", charge_id).eq("status", PaymentStatus.PENDING.value).execute()

        result = self._table("payments").select("*").eq(
            "charge_id", charge_id
        ).limit(1).execute()
        return Payment(**result.data[0]) if result.data else None

    # Progress updates

    async def create_progress_update(self, goal_id: str, fields: dict[str, Any]) -> ProgressUpdate:
        result = self._table("progress_updates").insert(
            _serialize({**fields, "goal_id": goal_id, "created_at": _now()})
        ).execute()
        return ProgressUpdate(**result.data[0])

    async def list_progress_updates(self, goal_id: str) -> list[ProgressUpdate]:
        result = self._table("progress_updates").select("*").eq(
            "goal_id", goal_id
        ).order("created_at").execute()
        return [ProgressUpdate(**p) for p in result.data]
