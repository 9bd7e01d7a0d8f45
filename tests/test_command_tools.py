import asyncio
from pathlib import Path

import pytest
from pydantic import ValidationError

from dexscript.command_tools import CommandToolSurface, load_tools_from_directory
from dexscript.models import ToolDefinition
from dexscript.tool_surface import ToolError


@pytest.fixture
def tool_dir(tmp_path: Path) -> Path:
    """Creates a temporary directory with tool definitions backed by echo."""
    d = tmp_path / "tools"
    d.mkdir()

    (d / "balances.tool.yml").write_text("""
name: get_balances
description: "Wallet balances"
command_template: >-
  echo '{"network": "{{ network }}", "assets": "{{ asset_filter or "all" }}"}'
""")
    (d / "swap.tool.yml").write_text("""
name: execute_swap
command_template: >-
  echo "swapped {{ amount }} {{ from_asset }} for {{ to_asset }} on pool {{ pool_id }}"
parameters:
  amount:
    required: true
  pool_id:
    default: 1
success_pattern: "swapped"
timeout: 10
""")
    (d / "faucet.tool.yml").write_text("""
name: faucet
command_template: echo "ERROR faucet drained for {{ address }}"
failure_pattern: "ERROR"
""")
    (d / "empty.tool.yml").write_text("")
    (d / "notes.yml").write_text("name: not-a-tool")
    return d


def test_load_tools_from_directory(tool_dir: Path):
    tools = load_tools_from_directory(str(tool_dir))

    assert sorted(tools) == ["execute_swap", "faucet", "get_balances"]
    assert tools["execute_swap"].parameters["amount"].required is True
    assert tools["execute_swap"].timeout == 10
    assert load_tools_from_directory(str(tool_dir / "missing")) == {}


def test_duplicate_tool_names_keep_the_later_file(tool_dir: Path):
    (tool_dir / "zz_balances.tool.yml").write_text("name: get_balances\ncommand_template: echo override\n")
    tools = load_tools_from_directory(str(tool_dir))
    assert tools["get_balances"].command_template == "echo override"


def test_invalid_tool_definition_raises(tool_dir: Path):
    (tool_dir / "broken.tool.yml").write_text("description: no name or command\n")
    with pytest.raises(ValidationError):
        load_tools_from_directory(str(tool_dir))


def test_tool_file_must_be_a_mapping(tool_dir: Path):
    (tool_dir / "list.tool.yml").write_text("- get_pools\n- get_pool\n")
    with pytest.raises(ValidationError):
        load_tools_from_directory(str(tool_dir))


def test_render_command_uses_context_and_defaults(tool_dir: Path):
    surface = CommandToolSurface.from_directory(str(tool_dir), context={"network": "testnet"})
    tool = surface.tools["execute_swap"]

    command = surface.render_command(tool, {"amount": "5", "from_asset": "ATOM", "to_asset": "OM",
                                            "pool_id": None})
    assert command == 'echo "swapped 5 ATOM for OM on pool 1"'

    with pytest.raises(ToolError, match="missing required parameters: amount"):
        surface.render_command(tool, {"from_asset": "ATOM"})


def test_render_errors_become_tool_errors():
    surface = CommandToolSurface({"bad": ToolDefinition(name="bad", command_template="echo {{ oops(")})
    with pytest.raises(ToolError, match="Failed to render"):
        surface.render_command(surface.tools["bad"], {})


@pytest.mark.asyncio
async def test_json_output_is_decoded(tool_dir: Path):
    surface = CommandToolSurface.from_directory(str(tool_dir), context={"network": "mantra-dukong"})

    assert await surface.get_balances("ATOM,USDC") == {"network": "mantra-dukong", "assets": "ATOM,USDC"}
    assert await surface.get_balances() == {"network": "mantra-dukong", "assets": "all"}


@pytest.mark.asyncio
async def test_plain_output_is_wrapped(tool_dir: Path):
    surface = CommandToolSurface.from_directory(str(tool_dir))

    result = await surface.execute_swap("ATOM", "USDC", "10", "1")

    assert result == {"stdout": "swapped 10 ATOM for USDC on pool 1", "returncode": 0}


@pytest.mark.asyncio
async def test_failures_raise_tool_errors(tool_dir: Path):
    surface = CommandToolSurface.from_directory(str(tool_dir))

    with pytest.raises(ToolError, match="failure pattern") as excinfo:
        await surface.call_tool("faucet", {"address": "mantra1abc"})
    assert excinfo.value.tool_name == "faucet"

    with pytest.raises(ToolError, match="is not configured"):
        await surface.get_pools()

    with pytest.raises(ToolError, match="is not configured"):
        await surface.call_tool("unknown", {})


@pytest.mark.asyncio
async def test_exit_code_and_success_pattern():
    surface = CommandToolSurface({
        "validate_network": ToolDefinition(name="validate_network", command_template="echo down >&2; exit 3"),
        "get_contracts": ToolDefinition(name="get_contracts", command_template="echo nothing",
                                         success_pattern="contract"),
    })

    with pytest.raises(ToolError, match="exited with code 3: down"):
        await surface.validate_network()
    with pytest.raises(ToolError, match="did not match success pattern"):
        await surface.get_contracts()


@pytest.mark.asyncio
async def test_tool_timeout():
    surface = CommandToolSurface({
        "get_pool": ToolDefinition(name="get_pool", command_template="sleep 5", timeout=1),
    })
    with pytest.raises(ToolError, match="timed out after 1 seconds"):
        await surface.get_pool("1")


@pytest.mark.asyncio
async def test_commands_run_in_work_dir(tmp_path: Path):
    (tmp_path / "marker.txt").write_text("here")
    surface = CommandToolSurface(
        {"get_contracts": ToolDefinition(name="get_contracts", command_template="cat marker.txt")},
        work_dir=tmp_path,
    )
    assert await surface.get_contracts() == {"stdout": "here", "returncode": 0}


@pytest.mark.asyncio
async def test_cancelled_command_is_killed_and_reaped(monkeypatch):
    """A cancelled operation leaves no running or unreaped command behind."""
    started = []
    create = asyncio.create_subprocess_shell

    async def recording_create(*args, **kwargs):
        process = await create(*args, **kwargs)
        started.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_shell", recording_create)
    surface = CommandToolSurface({
        "get_pool": ToolDefinition(name="get_pool", command_template="sleep 30"),
    })

    task = asyncio.ensure_future(surface.get_pool("1"))
    while not started:
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert started[0].returncode is not None
