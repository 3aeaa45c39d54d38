"""Penalty resolution for settled goals."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

from stakeit.errors import ValidationError
from stakeit.models.goal import Goal, PenaltyType


MIN_HOLD_MONTHS = 1
MAX_HOLD_MONTHS = 12


@dataclass(frozen=True)
class PenaltySideEffects:
    """Follow-up actions the lifecycle controller persists or hands on."""
    frozen_until: Optional[datetime] = None
    restake_on_next_goal: bool = False
    charity: Optional[str] = None
    split_among: Optional[int] = None
    per_referee_share: Optional[int] = None


@dataclass(frozen=True)
class PenaltyDisposition:
    description: str
    refund_approved: bool
    side_effects: PenaltySideEffects = PenaltySideEffects()


def format_amount(amount: int, currency_symbol: str = "฿") -> str:
    return f"{currency_symbol}{amount:,}"


def resolve_penalty(
    penalty_type: PenaltyType,
    stake_amount: int,
    hold_months: Optional[int] = None,
    charity_choice: Optional[str] = None,
    now: Optional[datetime] = None,
    referee_count: int = 0,
    currency_symbol: str = "฿",
) -> PenaltyDisposition:
    """
    Map a failed goal's penalty type to its financial disposition.

    Only ``delayed_refund`` carries a time-based side effect: the stake is
    frozen for ``hold_months`` calendar months and then restaked on the
    owner's next goal.
    """
    amount = format_amount(stake_amount, currency_symbol)
    penalty_type = PenaltyType(penalty_type)

    if penalty_type == PenaltyType.DELAYED_REFUND:
        if hold_months is None or not MIN_HOLD_MONTHS <= hold_months <= MAX_HOLD_MONTHS:
            raise ValidationError(
                f"hold_months must be between {MIN_HOLD_MONTHS} and {MAX_HOLD_MONTHS}",
                fields={"hold_months": hold_months},
            )
        now = now or datetime.now(timezone.utc)
        unit = "month" if hold_months == 1 else "months"
        return PenaltyDisposition(
            description=(
                f"{amount} is frozen for {hold_months} {unit}, "
                "then restaked on your next goal"
            ),
            refund_approved=False,
            side_effects=PenaltySideEffects(
                frozen_until=now + relativedelta(months=hold_months),
                restake_on_next_goal=True,
            ),
        )

    if penalty_type == PenaltyType.SPLIT_TO_GROUP:
        if referee_count > 0:
            share = stake_amount // referee_count
            description = (
                f"{amount} will be split among {referee_count} group members "
                f"({format_amount(share, currency_symbol)} each)"
            )
            return PenaltyDisposition(
                description=description,
                refund_approved=False,
                side_effects=PenaltySideEffects(
                    split_among=referee_count, per_referee_share=share
                ),
            )
        return PenaltyDisposition(
            description=f"{amount} will be split among group members",
            refund_approved=False,
        )

    if penalty_type == PenaltyType.CHARITY_DONATION:
        charity = charity_choice or "charity"
        return PenaltyDisposition(
            description=f"{amount} will be donated to {charity}",
            refund_approved=False,
            side_effects=PenaltySideEffects(charity=charity),
        )

    return PenaltyDisposition(
        description=f"{amount} is forfeited",
        refund_approved=False,
    )


def resolve_success(stake_amount: int, currency_symbol: str = "฿") -> PenaltyDisposition:
    """Completed goals get the whole stake back, restaked balance included."""
    return PenaltyDisposition(
        description=f"{format_amount(stake_amount, currency_symbol)} will be refunded",
        refund_approved=True,
    )


def disposition_for(
    goal: Goal,
    passed: bool,
    referee_count: int = 0,
    now: Optional[datetime] = None,
    currency_symbol: str = "฿",
) -> PenaltyDisposition:
    """Disposition for a goal that just reached a terminal status."""
    if passed:
        return resolve_success(goal.stake_amount, currency_symbol)
    return resolve_penalty(
        goal.penalty_type,
        goal.stake_amount,
        hold_months=goal.hold_months,
        charity_choice=goal.charity_choice,
        now=now,
        referee_count=referee_count,
        currency_symbol=currency_symbol,
    )
