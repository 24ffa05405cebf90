"""
Explicit pipeline state and the stage state machine.

Idle → Consolidating → Deduping → Promoting → Syncing → Auditing → (Passed | Recovering)
Recovering → Auditing, and a failed re-audit ends in Failed.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from contentledger.core.exceptions import ExitCode
from contentledger.core.models.checkpoint import Checkpoint
from contentledger.core.models.ground_truth import GroundTruth
from contentledger.core.models.manifest import Manifest


class PipelineStage(str, Enum):
    IDLE = "idle"
    CONSOLIDATING = "consolidating"
    DEDUPING = "deduping"
    PROMOTING = "promoting"
    SYNCING = "syncing"
    AUDITING = "auditing"
    RECOVERING = "recovering"
    PASSED = "passed"
    FAILED = "failed"


TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    # IDLE → RECOVERING is the operator-invoked recovery run
    PipelineStage.IDLE: frozenset(
        {PipelineStage.CONSOLIDATING, PipelineStage.RECOVERING, PipelineStage.FAILED}
    ),
    PipelineStage.CONSOLIDATING: frozenset({PipelineStage.DEDUPING, PipelineStage.FAILED}),
    PipelineStage.DEDUPING: frozenset({PipelineStage.PROMOTING, PipelineStage.FAILED}),
    PipelineStage.PROMOTING: frozenset({PipelineStage.SYNCING, PipelineStage.FAILED}),
    PipelineStage.SYNCING: frozenset({PipelineStage.AUDITING, PipelineStage.FAILED}),
    PipelineStage.AUDITING: frozenset(
        {PipelineStage.PASSED, PipelineStage.RECOVERING, PipelineStage.FAILED}
    ),
    PipelineStage.RECOVERING: frozenset({PipelineStage.AUDITING, PipelineStage.FAILED}),
    PipelineStage.PASSED: frozenset({PipelineStage.IDLE}),
    PipelineStage.FAILED: frozenset({PipelineStage.IDLE}),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a stage change is not in the transition table."""


class StageResult(BaseModel):
    """
    Result of one stage: success with a summary, or a tagged failure.

    Attributes:
        stage: Stage that produced this result
        ok: Whether the stage succeeded
        summary: Stage counters (bucket sizes, before/after)
        exit_code: Exit code to surface when the stage failed
        reason: Failure description
        offending_keys: Sample of keys responsible for the failure
    """

    stage: PipelineStage
    ok: bool
    summary: dict[str, Any] = Field(default_factory=dict)
    exit_code: ExitCode = ExitCode.OK
    reason: str | None = None
    offending_keys: list[str] = Field(default_factory=list)

    @classmethod
    def success(cls, stage: PipelineStage, **summary: Any) -> "StageResult":
        return cls(stage=stage, ok=True, summary=summary)

    @classmethod
    def failure(
        cls,
        stage: PipelineStage,
        exit_code: ExitCode,
        reason: str,
        offending_keys: list[str] | None = None,
        **summary: Any,
    ) -> "StageResult":
        return cls(
            stage=stage,
            ok=False,
            summary=summary,
            exit_code=exit_code,
            reason=reason,
            offending_keys=offending_keys or [],
        )


class PipelineState(BaseModel):
    """
    State passed between stages for one cycle.

    Loaded from disk at the start of the cycle; stages persist what they change
    before returning, so nothing here has to survive the process.
    """

    scope: str
    manifest: Manifest = Field(default_factory=Manifest)
    checkpoint: Checkpoint = Field(default_factory=Checkpoint)
    ground_truth: GroundTruth = Field(default_factory=GroundTruth)
    stage: PipelineStage = PipelineStage.IDLE
    results: list[StageResult] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    recovery_attempted: bool = False

    def advance(self, to: PipelineStage) -> None:
        allowed = TRANSITIONS[self.stage]
        if to not in allowed:
            raise InvalidTransitionError(f"Cannot move from {self.stage.value} to {to.value}")
        self.stage = to

    def record(self, result: StageResult) -> StageResult:
        self.results.append(result)
        return result

    @property
    def last_result(self) -> StageResult | None:
        return self.results[-1] if self.results else None

    @property
    def exit_code(self) -> ExitCode:
        if self.stage == PipelineStage.PASSED:
            return ExitCode.OK
        for result in reversed(self.results):
            if not result.ok:
                return result.exit_code
        return ExitCode.OK
