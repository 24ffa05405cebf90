"""
Audit models: domain-set partition of the population and invariant violations.
"""

from typing import Literal

from pydantic import BaseModel, Field

from contentledger.core.exceptions import ExitCode

ViolationKind = Literal[
    "duplicate_keys",
    "success_reject_overlap",
    "drift_success_overlap",
    "misplaced_failure",
    "misplaced_success",
    "done_rejected_overlap",
    "queued_overlap",
    "checkpoint_stale",
    "identity_mismatch",
]


class InvariantViolation(BaseModel):
    """
    One failed invariant, with the keys that break it.

    Attributes:
        kind: Which invariant failed
        message: Human readable description
        exit_code: Exit code the caller should surface for this failure
        count: Total number of offending keys
        offending_keys: Sorted sample of offending keys (bounded)
    """

    kind: ViolationKind
    message: str
    exit_code: ExitCode
    count: int = Field(..., ge=0)
    offending_keys: list[str] = Field(default_factory=list)


class DomainSets(BaseModel):
    """
    Partition of the population ``P`` for one scope.

    D, R, M, X and U are computed independently from the checkpoint so that a
    key double counted in done and rejected shows up as an identity failure.
    """

    scope: str
    population: set[str] = Field(default_factory=set)
    manual: set[str] = Field(default_factory=set)
    done: set[str] = Field(default_factory=set)
    rejected: set[str] = Field(default_factory=set)
    denied: set[str] = Field(default_factory=set)
    unaccounted: set[str] = Field(default_factory=set)
    population_drift: set[str] = Field(default_factory=set)

    @property
    def accounted_total(self) -> int:
        return (
            len(self.done)
            + len(self.rejected)
            + len(self.manual)
            + len(self.denied)
            + len(self.unaccounted)
        )

    @property
    def identity_holds(self) -> bool:
        """|P| = |D| + |R| + |M| + |X| + |U|"""
        return len(self.population) == self.accounted_total

    def counts(self) -> dict[str, int]:
        return {
            "P": len(self.population),
            "D": len(self.done),
            "R": len(self.rejected),
            "M": len(self.manual),
            "X": len(self.denied),
            "U": len(self.unaccounted),
            "drift": len(self.population_drift),
        }


class AuditReport(BaseModel):
    """Outcome of one auditor pass."""

    scope: str
    sets: DomainSets
    violations: list[InvariantViolation] = Field(default_factory=list)
    ledger_counts: dict[str, int] = Field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return not self.violations

    @property
    def exit_code(self) -> ExitCode:
        """Exit code of the first violation in check order, OK when clean."""
        if not self.violations:
            return ExitCode.OK
        return self.violations[0].exit_code

    def offending_keys(self) -> list[str]:
        keys: set[str] = set()
        for violation in self.violations:
            keys.update(violation.offending_keys)
        return sorted(keys)

    def summary(self) -> dict:
        """Machine-checkable summary for logs and telemetry."""
        return {
            "scope": self.scope,
            "passed": self.passed,
            "exit_code": int(self.exit_code),
            "buckets": self.sets.counts(),
            "ledgers": dict(self.ledger_counts),
            "violations": [
                {"kind": v.kind, "count": v.count, "sample": v.offending_keys}
                for v in self.violations
            ],
        }
