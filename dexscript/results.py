"""
Result models produced by the script runner.

Results are frozen once built so a finished run can be handed to a
reporter or serialised with ``model_dump_json()`` without further changes.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExecutionStatus(str, Enum):
    """Status of a script or of a single step."""
    RUNNING = "Running"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class OutcomeValidation(BaseModel):
    """Expected outcome of a step compared with what the tool returned."""
    model_config = ConfigDict(frozen=True)

    expected: str
    actual: str
    matches: bool
    notes: Optional[str] = None


class StepExecutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_number: int
    description: str
    status: ExecutionStatus
    start_time: datetime
    end_time: datetime
    duration_ms: int = Field(ge=0)
    result_data: Optional[Any] = None
    error: Optional[str] = None
    outcome_validation: Optional[OutcomeValidation] = None


class ExecutionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_steps: int = 0
    successful_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0
    pass_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    metrics: Dict[str, Any] = Field(default_factory=dict)


class ScriptExecutionResult(BaseModel):
    """Complete report of one script run."""
    model_config = ConfigDict(frozen=True)

    script_name: str
    status: ExecutionStatus
    start_time: datetime
    end_time: datetime
    duration_ms: int = Field(ge=0)
    step_results: List[StepExecutionResult] = Field(default_factory=list)
    summary: ExecutionSummary = Field(default_factory=ExecutionSummary)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS


def create_execution_summary(step_results: List[StepExecutionResult],
                             script_steps: Optional[int] = None,
                             collect_metrics: bool = True) -> ExecutionSummary:
    """
    Aggregates step results into a summary.

    Steps that timed out are counted neither as successful nor as failed,
    so they end up in ``skipped_steps`` together with anything else that
    did not reach a success/failure verdict.
    """
    total_steps = len(step_results)
    successful_steps = sum(1 for r in step_results if r.status is ExecutionStatus.SUCCESS)
    failed_steps = sum(1 for r in step_results if r.status is ExecutionStatus.FAILED)
    skipped_steps = total_steps - successful_steps - failed_steps
    pass_rate = (successful_steps / total_steps) * 100.0 if total_steps > 0 else 0.0

    metrics: Dict[str, Any] = {
        "total_steps": total_steps,
        "successful_steps": successful_steps,
        "failed_steps": failed_steps,
        "pass_rate": pass_rate,
    }
    if collect_metrics:
        durations = [r.duration_ms for r in step_results]
        metrics["timed_out_steps"] = sum(1 for r in step_results if r.status is ExecutionStatus.TIMED_OUT)
        metrics["total_step_duration_ms"] = sum(durations)
        metrics["average_step_duration_ms"] = (sum(durations) / len(durations)) if durations else 0.0
        if script_steps is not None:
            metrics["script_steps"] = script_steps
            metrics["not_attempted_steps"] = max(script_steps - total_steps, 0)

    return ExecutionSummary(
        total_steps=total_steps,
        successful_steps=successful_steps,
        failed_steps=failed_steps,
        skipped_steps=skipped_steps,
        pass_rate=pass_rate,
        metrics=metrics,
    )
