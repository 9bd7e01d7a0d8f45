"""
Script runner: executes a parsed TestScript against a ToolSurface.

Steps run one after another. Every step is raced against its own deadline
and the whole loop is raced against the script deadline. Whatever happens,
``execute_script`` returns a ScriptExecutionResult; failures are recorded
in its ``status`` and ``error`` fields.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, List, Optional, TypeVar, Union

from rich.markup import escape

from dexscript.config import ParserSettings, ScriptExecutionConfig
from dexscript.logger import log
from dexscript.models import (
    CheckBalance,
    CreatePool,
    Custom,
    ExecuteSwap,
    GetContracts,
    GetPool,
    GetPools,
    MonitorTransaction,
    ProvideLiquidity,
    StepAction,
    TestScript,
    TestStep,
    ValidateNetwork,
    WithdrawLiquidity,
)
from dexscript.results import (
    ExecutionStatus,
    ScriptExecutionResult,
    StepExecutionResult,
    create_execution_summary,
)
from dexscript.script_parser import ScriptParser
from dexscript.tool_surface import ToolSurface
from dexscript.validation_engine import OutcomeValidator

T = TypeVar("T")


class DeadlineExceeded(Exception):
    """Raised by run_with_deadline when the deadline wins the race."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"deadline of {seconds} seconds exceeded")


class OperationCancelled(Exception):
    """Raised by run_with_deadline when the operation cancelled itself."""


def _discard_result(task: "asyncio.Future[Any]"):
    if not task.cancelled():
        task.exception()


async def run_with_deadline(awaitable: Awaitable[T], seconds: float) -> T:
    """
    Awaits ``awaitable`` or gives up after ``seconds``, whichever comes first.

    The losing operation is cancelled and never awaited again, so it cannot
    report anything after the deadline. Errors raised by the operation itself
    propagate unchanged, including its own TimeoutErrors. An operation that
    ends up cancelled without the caller being cancelled raises
    OperationCancelled rather than CancelledError, so only cancellation of
    the caller unwinds the caller.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds)
    except asyncio.CancelledError:
        task.cancel()
        task.add_done_callback(_discard_result)
        raise
    if not done:
        task.cancel()
        task.add_done_callback(_discard_result)
        raise DeadlineExceeded(seconds)
    if task.cancelled():
        raise OperationCancelled("operation was cancelled")
    return task.result()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class _ExecutionState:
    """Per-run bookkeeping; lives only as long as one execute_script call."""

    def __init__(self, script: TestScript):
        self.script = script
        self.current_step = 0
        self.step_results: List[StepExecutionResult] = []


class ScriptRunner:
    """
    Runs test scripts step by step through a tool surface.
    """
    def __init__(self, tools: ToolSurface,
                 config: Optional[ScriptExecutionConfig] = None,
                 validator: Optional[OutcomeValidator] = None):
        self.tools = tools
        self.config = config or ScriptExecutionConfig()
        self.validator = validator or OutcomeValidator()

    async def execute_script(self, script: TestScript,
                             config: Optional[ScriptExecutionConfig] = None) -> ScriptExecutionResult:
        """Runs every step of ``script``. Never raises for step or script failures."""
        config = config or self.config
        state = _ExecutionState(script)
        start_time = _now()
        started = time.monotonic()

        log.info(f"[bold]Starting script[/bold]: [yellow]{escape(script.name)}[/yellow] "
                 f"({len(script.steps)} steps)")

        status = ExecutionStatus.SUCCESS
        error: Optional[str] = None
        try:
            await run_with_deadline(self._execute_steps(state, config), config.max_script_timeout)
        except DeadlineExceeded:
            status = ExecutionStatus.TIMED_OUT
            error = f"Script execution timed out after {config.max_script_timeout} seconds"
            log.warning(f"Script '{escape(script.name)}' timed out after {config.max_script_timeout} seconds "
                        f"during step {state.current_step}")
        except OperationCancelled:
            status = ExecutionStatus.CANCELLED
            error = "Script execution was cancelled"
            log.warning(f"Script '{escape(script.name)}' cancelled itself during step {state.current_step}")
        except asyncio.CancelledError:
            log.warning(f"Script '{escape(script.name)}' was cancelled during step {state.current_step}")
            raise
        except Exception as e:
            status = ExecutionStatus.FAILED
            error = str(e) or type(e).__name__
            log.exception(f"Script '{escape(script.name)}' failed unexpectedly")

        step_results = list(state.step_results)
        summary = create_execution_summary(step_results, len(script.steps), config.collect_metrics)
        result = ScriptExecutionResult(
            script_name=script.name,
            status=status,
            start_time=start_time,
            end_time=_now(),
            duration_ms=_elapsed_ms(started),
            step_results=step_results,
            summary=summary,
            error=error,
        )

        style = "green" if result.succeeded else "red"
        log.info(f"[bold {style}]Script '{escape(script.name)}' finished: {status.value}[/bold {style}] "
                 f"({summary.successful_steps}/{len(script.steps)} steps passed, {result.duration_ms} ms)")
        return result

    async def _execute_steps(self, state: _ExecutionState, config: ScriptExecutionConfig):
        for step in state.script.steps:
            state.current_step = step.step_number
            log.info(f"[bold]Step {step.step_number}[/bold]: {escape(step.description)}")

            step_result = await self.execute_step(step, config)
            state.step_results.append(step_result)

            if step_result.status is ExecutionStatus.FAILED and not config.continue_on_failure:
                log.error(f"Step {step.step_number} failed and continue_on_failure is false, stopping execution")
                break

    async def execute_step(self, step: TestStep,
                           config: Optional[ScriptExecutionConfig] = None) -> StepExecutionResult:
        """Runs a single step against its deadline and records the outcome."""
        config = config or self.config
        step_timeout = step.timeout if step.timeout is not None else config.default_step_timeout
        start_time = _now()
        started = time.monotonic()

        result_data: Any = None
        error: Optional[str] = None
        outcome_validation = None
        try:
            result_data = await run_with_deadline(self.dispatch(step.action), step_timeout)
        except DeadlineExceeded:
            status = ExecutionStatus.TIMED_OUT
            error = f"Step timed out after {step_timeout} seconds"
            log.warning(f"Step {step.step_number} timed out after {step_timeout} seconds")
        except OperationCancelled:
            status = ExecutionStatus.CANCELLED
            error = "Step was cancelled by its tool operation"
            log.warning(f"Step {step.step_number} was cancelled")
        except Exception as e:
            status = ExecutionStatus.FAILED
            error = str(e) or type(e).__name__
            log.error(f"Step {step.step_number} failed: {escape(error)}")
        else:
            status = ExecutionStatus.SUCCESS
            if config.validate_outcomes and step.expected_outcome is not None:
                outcome_validation = self.validator.validate(step.expected_outcome, result_data)
                if not outcome_validation.matches:
                    status = ExecutionStatus.FAILED
                    error = f"Expected outcome not met: {step.expected_outcome}"
                    log.error(f"Step {step.step_number}: expected '{escape(step.expected_outcome)}' "
                              f"but got {escape(outcome_validation.actual[:200])}")

        return StepExecutionResult(
            step_number=step.step_number,
            description=step.description,
            status=status,
            start_time=start_time,
            end_time=_now(),
            duration_ms=_elapsed_ms(started),
            result_data=result_data,
            error=error,
            outcome_validation=outcome_validation,
        )

    async def dispatch(self, action: StepAction) -> Any:
        """Calls the tool surface operation matching ``action``."""
        tools = self.tools
        if isinstance(action, CheckBalance):
            return await tools.get_balances(",".join(action.assets) if action.assets else None)
        elif isinstance(action, GetPools):
            return await tools.get_pools(action.filter)
        elif isinstance(action, GetPool):
            return await tools.get_pool(action.pool_id)
        elif isinstance(action, ExecuteSwap):
            return await tools.execute_swap(
                action.from_asset,
                action.to_asset,
                action.amount,
                action.slippage,
                pool_id=action.pool_id,
                min_output=action.min_output,
            )
        elif isinstance(action, ProvideLiquidity):
            return await tools.provide_liquidity(action.pool_id, action.asset_a_amount, action.asset_b_amount)
        elif isinstance(action, WithdrawLiquidity):
            return await tools.withdraw_liquidity(action.pool_id, action.lp_amount)
        elif isinstance(action, CreatePool):
            return await tools.create_pool(action.asset_a, action.asset_b, action.initial_price)
        elif isinstance(action, MonitorTransaction):
            return await tools.monitor_transaction(action.tx_hash, action.timeout)
        elif isinstance(action, ValidateNetwork):
            return await tools.validate_network()
        elif isinstance(action, GetContracts):
            return await tools.get_contracts()
        elif isinstance(action, Custom):
            return await tools.call_tool(action.tool_name, action.parameters)
        raise TypeError(f"Unknown step action: {type(action).__name__}")


async def execute_script(script: TestScript, tools: ToolSurface,
                         config: Optional[ScriptExecutionConfig] = None) -> ScriptExecutionResult:
    return await ScriptRunner(tools, config).execute_script(script)


async def run_script_file(path: Union[str, Path], tools: ToolSurface,
                          config: Optional[ScriptExecutionConfig] = None,
                          settings: Optional[ParserSettings] = None,
                          strict: bool = False) -> ScriptExecutionResult:
    """
    Parses and runs a script file.
    Parse errors are raised; everything after parsing is reported in the result.
    """
    parser = ScriptParser(settings)
    script = parser.parse_file(path)
    if strict:
        parser.validate_script_for_execution(script)
    return await ScriptRunner(tools, config).execute_script(script)
