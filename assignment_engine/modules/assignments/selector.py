"""Ranking of eligible attorneys for an automatic assignment.

Pure functions over plain values: the service gathers expertise scores and
workload snapshots, this module only filters, scores and orders them.
"""

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Sequence
from assignment_engine.core.config import ScoringConfig

# used when no rule matched (recommendation preview only)
DEFAULT_MAX_WORKLOAD_PERCENTAGE = 85.0

@dataclass(frozen=True)
class CandidateProfile:
    user_id: uuid.UUID
    expertise_score: float
    capacity_percentage: float
    active_cases_count: int = 0

@dataclass(frozen=True)
class SelectionConstraints:
    min_expertise_score: float = 0.0
    max_workload_percentage: float = DEFAULT_MAX_WORKLOAD_PERCENTAGE
    prefer_previous_attorney: bool = False

    @classmethod
    def from_rule(cls, rule) -> "SelectionConstraints":
        return cls(
            min_expertise_score=rule.min_expertise_score if rule.min_expertise_score is not None else 0.0,
            max_workload_percentage=rule.max_workload_percentage if rule.max_workload_percentage is not None else DEFAULT_MAX_WORKLOAD_PERCENTAGE,
            prefer_previous_attorney=bool(rule.prefer_previous_attorney),
        )

@dataclass(frozen=True)
class Candidate:
    user_id: uuid.UUID
    score: float
    expertise_score: float
    capacity_percentage: float
    active_cases_count: int = 0
    preferred: bool = False  # chosen as the client's previous attorney

@dataclass(frozen=True)
class NoEligibleCandidate:
    """Nobody passed the filters. Callers fall back to manual assignment."""
    reason: str
    evaluated: int = 0
    rejected: dict[uuid.UUID, str] = field(default_factory=dict)

class CandidateSelector:
    def __init__(self, scoring: ScoringConfig | None = None):
        self.scoring = scoring or ScoringConfig()

    def score(self, profile: CandidateProfile) -> float:
        availability = 100.0 - profile.capacity_percentage
        raw = self.scoring.expertise_weight * profile.expertise_score + self.scoring.capacity_weight * availability
        # float noise must not decide ties
        return round(raw, 6)

    def filter(self, pool: Iterable[CandidateProfile], constraints: SelectionConstraints) -> tuple[list[CandidateProfile], dict[uuid.UUID, str]]:
        eligible, rejected = [], {}
        for p in pool:
            if p.expertise_score < constraints.min_expertise_score:
                rejected[p.user_id] = f"expertise {p.expertise_score:g} below {constraints.min_expertise_score:g}"
            elif p.capacity_percentage > constraints.max_workload_percentage:
                rejected[p.user_id] = f"capacity {p.capacity_percentage:g}% above {constraints.max_workload_percentage:g}%"
            else:
                eligible.append(p)
        return eligible, rejected

    def rank(self, pool: Iterable[CandidateProfile], constraints: SelectionConstraints) -> list[Candidate]:
        """Eligible candidates best first: score desc, then fewest active cases, then lowest user id."""
        eligible, _ = self.filter(pool, constraints)
        ranked = [
            Candidate(
                user_id=p.user_id,
                score=self.score(p),
                expertise_score=p.expertise_score,
                capacity_percentage=p.capacity_percentage,
                active_cases_count=p.active_cases_count,
            )
            for p in eligible
        ]
        ranked.sort(key=lambda c: (-c.score, c.active_cases_count, c.user_id))
        return ranked

    def select(
        self,
        pool: Sequence[CandidateProfile],
        constraints: SelectionConstraints,
        previous_user_id: uuid.UUID | None = None,
    ) -> Candidate | NoEligibleCandidate:
        eligible, rejected = self.filter(pool, constraints)
        if not eligible:
            reason = "no attorneys in pool" if not pool else "no attorney passed expertise and workload filters"
            return NoEligibleCandidate(reason=reason, evaluated=len(pool), rejected=rejected)

        if constraints.prefer_previous_attorney and previous_user_id is not None:
            for p in eligible:
                if p.user_id == previous_user_id:
                    return Candidate(
                        user_id=p.user_id,
                        score=self.score(p),
                        expertise_score=p.expertise_score,
                        capacity_percentage=p.capacity_percentage,
                        active_cases_count=p.active_cases_count,
                        preferred=True,
                    )

        return self.rank(eligible, constraints)[0]
