"""
Tests for the script runner.

Tools are AsyncMocks of the ToolSurface interface; slow tools are plain
coroutines passed as side effects.
"""
import asyncio
from pathlib import Path
from unittest.mock import Mock

import pytest

from dexscript.config import ScriptExecutionConfig
from dexscript.models import (
    CheckBalance,
    Custom,
    ExecuteSwap,
    GetContracts,
    MonitorTransaction,
    TestScript,
    TestStep,
)
from dexscript.results import ExecutionStatus
from dexscript.runner import (
    DeadlineExceeded,
    OperationCancelled,
    ScriptRunner,
    execute_script,
    run_script_file,
    run_with_deadline,
)
from dexscript.script_parser import parse_script
from dexscript.tool_surface import ToolError


def make_script(*steps: TestStep) -> TestScript:
    return TestScript(name="Runner test", steps=list(steps))


def step(number: int, action, expected=None, timeout=None) -> TestStep:
    return TestStep(step_number=number, description=f"step {number}", action=action,
                    expected_outcome=expected, timeout=timeout)


async def never_finishes(*args, **kwargs):
    await asyncio.sleep(30)


class TestRunWithDeadline:
    """Test suite for the deadline primitive"""

    @pytest.mark.asyncio
    async def test_returns_value_when_in_time(self):
        async def quick():
            return 7
        assert await run_with_deadline(quick(), 1) == 7

    @pytest.mark.asyncio
    async def test_raises_when_deadline_wins(self):
        with pytest.raises(DeadlineExceeded) as excinfo:
            await run_with_deadline(never_finishes(), 0.05)
        assert excinfo.value.seconds == 0.05

    @pytest.mark.asyncio
    async def test_own_timeout_error_is_not_a_deadline(self):
        async def failing():
            raise asyncio.TimeoutError("rpc timeout")
        with pytest.raises(asyncio.TimeoutError):
            await run_with_deadline(failing(), 1)

    @pytest.mark.asyncio
    async def test_loser_is_cancelled(self):
        finished = []

        async def slow():
            await asyncio.sleep(0.2)
            finished.append(True)

        with pytest.raises(DeadlineExceeded):
            await run_with_deadline(slow(), 0.01)
        await asyncio.sleep(0.3)
        assert finished == []

    @pytest.mark.asyncio
    async def test_self_cancelled_operation_is_not_caller_cancellation(self):
        async def cancels_itself():
            raise asyncio.CancelledError()
        with pytest.raises(OperationCancelled):
            await run_with_deadline(cancels_itself(), 1)


class TestScriptRunner:
    """Test suite for ScriptRunner.execute_script"""

    @pytest.mark.asyncio
    async def test_basic_swap_succeeds(self, tools, basic_swap_text):
        script = parse_script(basic_swap_text)

        result = await ScriptRunner(tools).execute_script(script)

        assert result.status is ExecutionStatus.SUCCESS
        assert result.succeeded
        assert result.error is None
        assert result.script_name == "Basic Swap Test"
        assert [r.step_number for r in result.step_results] == [1, 2]
        assert all(r.status is ExecutionStatus.SUCCESS for r in result.step_results)
        assert result.summary.pass_rate == 100.0
        tools.get_balances.assert_awaited_once_with("ATOM")
        tools.execute_swap.assert_awaited_once_with("ATOM", "USDC", "10", "1", pool_id=None, min_output=None)

        first = result.step_results[0]
        assert first.result_data == {"balances": [{"denom": "ATOM", "amount": "1000"}]}
        assert first.end_time >= first.start_time
        assert result.end_time >= result.start_time

    @pytest.mark.asyncio
    async def test_tool_error_stops_the_script(self, tools):
        tools.get_balances.side_effect = ToolError("node unreachable", "get_balances")
        script = make_script(step(1, CheckBalance(assets=["ATOM"])), step(2, GetContracts()))

        result = await ScriptRunner(tools).execute_script(script)

        assert result.status is ExecutionStatus.SUCCESS
        assert len(result.step_results) == 1
        assert result.step_results[0].status is ExecutionStatus.FAILED
        assert result.step_results[0].error == "node unreachable"
        assert result.summary.failed_steps == 1
        assert result.summary.metrics["not_attempted_steps"] == 1
        tools.get_contracts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_continue_on_failure_runs_every_step(self, tools):
        tools.get_balances.side_effect = ToolError("boom")
        script = make_script(step(1, CheckBalance(assets=[])), step(2, GetContracts()))
        config = ScriptExecutionConfig(continue_on_failure=True)

        result = await ScriptRunner(tools, config).execute_script(script)

        assert [r.status for r in result.step_results] == [ExecutionStatus.FAILED, ExecutionStatus.SUCCESS]
        assert result.summary.pass_rate == 50.0
        tools.get_balances.assert_awaited_once_with(None)

    @pytest.mark.asyncio
    async def test_step_timeout(self, tools):
        tools.monitor_transaction.side_effect = never_finishes
        script = make_script(
            step(1, MonitorTransaction(tx_hash="ABC"), timeout=1),
            step(2, GetContracts()),
        )

        result = await ScriptRunner(tools).execute_script(script)

        timed_out = result.step_results[0]
        assert timed_out.status is ExecutionStatus.TIMED_OUT
        assert timed_out.error == "Step timed out after 1 seconds"
        assert timed_out.result_data is None
        # a timeout is not a failure, so the script carries on
        assert result.step_results[1].status is ExecutionStatus.SUCCESS
        assert result.summary.skipped_steps == 1
        assert result.summary.metrics["timed_out_steps"] == 1

    @pytest.mark.asyncio
    async def test_zero_step_timeout_is_honoured(self, tools):
        tools.get_contracts.side_effect = never_finishes
        config = ScriptExecutionConfig(default_step_timeout=5)
        script = make_script(step(1, GetContracts(), timeout=0))
        result = await ScriptRunner(tools, config).execute_script(script)
        assert result.step_results[0].status is ExecutionStatus.TIMED_OUT

    @pytest.mark.asyncio
    async def test_script_timeout_keeps_partial_results(self, tools):
        tools.execute_swap.side_effect = never_finishes
        script = make_script(
            step(1, CheckBalance(assets=["ATOM"])),
            step(2, ExecuteSwap(from_asset="ATOM", to_asset="USDC", amount="1", slippage="1"), timeout=10),
            step(3, GetContracts()),
        )
        config = ScriptExecutionConfig(max_script_timeout=1, default_step_timeout=1)

        result = await ScriptRunner(tools, config).execute_script(script)

        assert result.status is ExecutionStatus.TIMED_OUT
        assert result.error == "Script execution timed out after 1 seconds"
        assert [r.step_number for r in result.step_results] == [1]
        tools.get_contracts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_outcome_mismatch_fails_the_step(self, tools):
        tools.execute_swap.return_value = {"status": "error", "reason": "insufficient funds"}
        script = make_script(
            step(1, ExecuteSwap(from_asset="ATOM", to_asset="USDC", amount="1", slippage="1"),
                 expected="swap success"),
        )

        result = await ScriptRunner(tools).execute_script(script)

        failed = result.step_results[0]
        assert failed.status is ExecutionStatus.FAILED
        assert failed.outcome_validation is not None
        assert failed.outcome_validation.matches is False
        assert failed.result_data == {"status": "error", "reason": "insufficient funds"}

    @pytest.mark.asyncio
    async def test_outcome_validation_can_be_disabled(self, tools):
        tools.execute_swap.return_value = {"status": "error"}
        script = make_script(
            step(1, ExecuteSwap(from_asset="ATOM", to_asset="USDC", amount="1", slippage="1"),
                 expected="swap success"),
        )
        config = ScriptExecutionConfig(validate_outcomes=False)

        result = await ScriptRunner(tools, config).execute_script(script)

        assert result.step_results[0].status is ExecutionStatus.SUCCESS
        assert result.step_results[0].outcome_validation is None

    @pytest.mark.asyncio
    async def test_matching_outcome_is_recorded(self, tools):
        script = make_script(step(1, GetContracts(), expected="contracts"))
        result = await ScriptRunner(tools).execute_script(script)

        validation = result.step_results[0].outcome_validation
        assert result.step_results[0].status is ExecutionStatus.SUCCESS
        assert validation.matches is True
        assert validation.actual == '{"contracts": []}'

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded_on_the_script(self, tools):
        validator = Mock()
        validator.validate.side_effect = RuntimeError("validator crashed")
        script = make_script(step(1, GetContracts()), step(2, GetContracts(), expected="anything"))

        result = await ScriptRunner(tools, validator=validator).execute_script(script)

        assert result.status is ExecutionStatus.FAILED
        assert result.error == "validator crashed"
        assert [r.step_number for r in result.step_results] == [1]

    @pytest.mark.asyncio
    async def test_tool_cancelled_error_becomes_a_cancelled_step(self, tools):
        tools.get_contracts.side_effect = asyncio.CancelledError()
        script = make_script(step(1, GetContracts()), step(2, CheckBalance(assets=["OM"])))

        result = await ScriptRunner(tools).execute_script(script)

        assert result.status is ExecutionStatus.SUCCESS
        assert [s.status for s in result.step_results] == [ExecutionStatus.CANCELLED, ExecutionStatus.SUCCESS]
        assert result.step_results[0].error == "Step was cancelled by its tool operation"
        assert result.summary.skipped_steps == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, tools):
        tools.get_contracts.side_effect = never_finishes
        task = asyncio.ensure_future(ScriptRunner(tools).execute_script(make_script(step(1, GetContracts()))))
        await asyncio.sleep(0.05)

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_concurrent_runs_keep_separate_results(self, tools):
        runner = ScriptRunner(tools)
        one = make_script(step(1, GetContracts()))
        two = make_script(step(1, GetContracts()), step(2, CheckBalance(assets=["OM"])))

        first, second = await asyncio.gather(runner.execute_script(one), runner.execute_script(two))

        assert len(first.step_results) == 1
        assert len(second.step_results) == 2


class TestDispatch:
    """Each action calls exactly one tool surface operation"""

    @pytest.mark.asyncio
    async def test_check_balance_joins_assets(self, tools):
        runner = ScriptRunner(tools)
        await runner.dispatch(CheckBalance(assets=["ATOM", "USDC"]))
        tools.get_balances.assert_awaited_once_with("ATOM,USDC")

    @pytest.mark.asyncio
    async def test_custom_calls_tool_by_name(self, tools):
        runner = ScriptRunner(tools)
        await runner.dispatch(Custom())
        await runner.dispatch(Custom(tool_name="faucet", parameters={"address": "mantra1"}))
        tools.call_tool.assert_any_await("unknown", {})
        tools.call_tool.assert_any_await("faucet", {"address": "mantra1"})

    @pytest.mark.asyncio
    async def test_monitor_transaction_passes_timeout(self, tools):
        await ScriptRunner(tools).dispatch(MonitorTransaction(tx_hash="FF", timeout=12))
        tools.monitor_transaction.assert_awaited_once_with("FF", 12)


@pytest.mark.asyncio
async def test_module_level_helpers(tools, tmp_path: Path, basic_swap_text):
    script_file = tmp_path / "swap.md"
    script_file.write_text(basic_swap_text)

    from_file = await run_script_file(script_file, tools)
    direct = await execute_script(parse_script(basic_swap_text), tools)

    assert from_file.status is ExecutionStatus.SUCCESS
    assert direct.status is ExecutionStatus.SUCCESS
    assert len(from_file.step_results) == len(direct.step_results) == 2
