from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from nightshift.models import PIPELINE_STAGES, Stage

DecisionStatus = Literal["continue", "completed", "failed", "crashed"]


class TransitionError(RuntimeError):
    """Raised for a (stage, outcome) pair the pipeline has no edge for."""


@dataclass(slots=True, frozen=True)
class TransitionDecision:
    next_stage: Stage
    attempts: int
    status: DecisionStatus
    reason: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status != "continue"


def is_audit_accepted(verdict: str | None, rating: int | None, pass_rating: int) -> bool:
    if verdict == "NEEDS_WORK":
        return False
    if verdict == "ACCEPTED":
        return True
    return rating is not None and rating >= pass_rating


@dataclass(slots=True, frozen=True)
class TransitionPolicy:
    """Maps a finished attempt to the task's next stage.

    ``attempts`` counts failed attempts and audit rework rounds. Once it would
    exceed ``retry_ceiling`` the task stops at its current stage as failed.
    """

    retry_ceiling: int = 2
    audit_pass_rating: int = 8

    def _bump(self, stage: Stage, attempts: int, retry_stage: Stage, reason: str) -> TransitionDecision:
        bumped = attempts + 1
        if bumped > self.retry_ceiling:
            return TransitionDecision(
                next_stage=stage,
                attempts=bumped,
                status="failed",
                reason=f"{reason} (attempt {bumped}, retry ceiling {self.retry_ceiling})",
            )
        return TransitionDecision(next_stage=retry_stage, attempts=bumped, status="continue", reason=reason)

    def decide(
        self,
        stage: Stage,
        outcome: str,
        attempts: int,
        *,
        verdict: str | None = None,
        rating: int | None = None,
        error: str | None = None,
    ) -> TransitionDecision:
        if stage not in PIPELINE_STAGES:
            raise TransitionError(f"No transition from non-executable stage '{stage}'")

        if outcome == "crashed":
            return TransitionDecision(
                next_stage=stage,
                attempts=attempts,
                status="crashed",
                reason=error or f"Agent crashed during {stage}",
            )

        if outcome == "failed":
            return self._bump(stage, attempts, stage, error or f"Attempt failed during {stage}")

        if outcome == "completed":
            if stage == "plan":
                return TransitionDecision(next_stage="code", attempts=attempts, status="continue")
            if stage == "code":
                return TransitionDecision(next_stage="audit", attempts=attempts, status="continue")
            if stage == "audit":
                if is_audit_accepted(verdict, rating, self.audit_pass_rating):
                    return TransitionDecision(
                        next_stage="completed", attempts=attempts, status="completed"
                    )
                rating_text = rating if rating is not None else "unknown"
                return self._bump(
                    stage,
                    attempts,
                    "code",
                    f"Audit returned {verdict or 'no verdict'} with rating {rating_text}",
                )

        raise TransitionError(f"No transition for stage '{stage}' with outcome '{outcome}'")
