"""Majority tally for period votes and final ballots."""

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class TallyResult:
    """Yes/no counts and the derived decision (None = still open)."""
    yes: int
    no: int
    total_referees: int
    passed: Optional[bool]

    @property
    def resolved(self) -> bool:
        return self.passed is not None


def majority_of(total: int) -> int:
    """Smallest count that is a strict majority of ``total``.

    ``majority_of(0) == 1``: with no registered referees the first vote
    decides the period.
    """
    return total // 2 + 1


def tally(votes: Iterable[bool], total_referees: int) -> TallyResult:
    """
    Decide a period (or final round) from boolean votes.

    Yes wins once it reaches a strict majority of ``total_referees``;
    no wins symmetrically; anything short of that leaves the outcome
    undetermined. Depends only on the counts, so re-tallying persisted
    votes always reproduces the live result.
    """
    yes = 0
    no = 0
    for vote in votes:
        if vote:
            yes += 1
        else:
            no += 1

    needed = majority_of(total_referees)
    passed: Optional[bool] = None
    if yes >= needed:
        passed = True
    elif no >= needed:
        passed = False

    return TallyResult(yes=yes, no=no, total_referees=total_referees, passed=passed)
