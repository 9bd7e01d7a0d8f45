"""
A tool surface backed by shell commands.

Each operation is looked up by name in a set of ``*.tool.yml`` files::

    name: execute_swap
    description: Swap through the dex CLI
    command_template: >
      dex-cli swap --network {{ network }} --from {{ from_asset }}
      --to {{ to_asset }} --amount {{ amount }} --slippage {{ slippage }}
    success_pattern: "tx_hash"
    timeout: 60

The operation arguments (plus the script context, e.g. ``network``) are
the Jinja2 template context. Standard output is parsed as JSON when
possible.
"""
import asyncio
import json
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from jinja2 import Environment, TemplateError
from rich.markup import escape

from dexscript.logger import log
from dexscript.models import ToolDefinition
from dexscript.tool_surface import ToolError, ToolSurface

KILL_WAIT_SECONDS = 5


class ToolLoader:
    """
    Loads and validates tool definitions from YAML files.
    """
    def __init__(self, tool_directory: Path):
        self.tool_directory = tool_directory
        self._tools: Dict[str, ToolDefinition] = {}

    def load_tools(self) -> Dict[str, ToolDefinition]:
        """
        Scans the tool directory, loads, validates, and returns the tools.
        """
        if not self.tool_directory.is_dir():
            log.debug(f"Tool directory {self.tool_directory} does not exist")
            return {}

        for tool_file in sorted(self.tool_directory.glob("*.tool.yml")):
            with open(tool_file, 'r', encoding='utf-8') as f:
                tool_data = yaml.safe_load(f)
            if not tool_data:
                continue
            tool = ToolDefinition.model_validate(tool_data)
            if tool.name in self._tools:
                log.warning(f"Duplicate tool '{tool.name}' in {tool_file.name}, keeping the later one")
            self._tools[tool.name] = tool
        return self._tools


def load_tools_from_directory(directory: str) -> Dict[str, ToolDefinition]:
    """
    Scans a directory for *.tool.yml files, validates them, and returns a
    dictionary of ToolDefinition objects.
    """
    return ToolLoader(Path(directory)).load_tools()


def _decode_output(stdout: str, returncode: int) -> Any:
    text = stdout.strip()
    if text:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass
    return {"stdout": text, "returncode": returncode}


class CommandToolSurface(ToolSurface):
    """
    Runs each tool surface operation as a rendered shell command.
    """
    def __init__(self, tools: Dict[str, ToolDefinition],
                 work_dir: Optional[Path] = None,
                 context: Optional[Dict[str, Any]] = None):
        self.tools = tools
        self.work_dir = work_dir
        self.context = context or {}
        # Templates are plain strings from the tool files; no loader needed
        self.jinja_env = Environment()

    @classmethod
    def from_directory(cls, directory: str, **kwargs) -> "CommandToolSurface":
        return cls(load_tools_from_directory(directory), **kwargs)

    def render_command(self, tool: ToolDefinition, arguments: Dict[str, Any]) -> str:
        params: Dict[str, Any] = dict(self.context)
        for name, spec in tool.parameters.items():
            if arguments.get(name) is None and spec.default is not None:
                params[name] = spec.default
        params.update({k: v for k, v in arguments.items() if v is not None})

        missing = [name for name, spec in tool.parameters.items() if spec.required and name not in params]
        if missing:
            raise ToolError(f"Tool '{tool.name}' is missing required parameters: {', '.join(missing)}", tool.name)

        try:
            return self.jinja_env.from_string(tool.command_template).render(**params)
        except TemplateError as e:
            raise ToolError(f"Failed to render command for tool '{tool.name}': {e}", tool.name) from e

    async def run_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        tool = self.tools.get(name)
        if tool is None:
            raise ToolError(f"Tool '{name}' is not configured", name)

        command = self.render_command(tool, arguments)
        log.info(f"Executing command: [cyan]{escape(command)}[/cyan]")

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(self.work_dir) if self.work_dir else None,
        )
        try:
            if tool.timeout:
                stdout_b, stderr_b = await asyncio.wait_for(process.communicate(), tool.timeout)
            else:
                stdout_b, stderr_b = await process.communicate()
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ToolError(f"Tool '{name}' timed out after {tool.timeout} seconds", name) from None
        except asyncio.CancelledError:
            # The step deadline fired; kill the command and reap it before unwinding.
            if process.returncode is None:
                process.kill()
                try:
                    await asyncio.wait_for(asyncio.shield(process.wait()), KILL_WAIT_SECONDS)
                except asyncio.TimeoutError:
                    log.warning(f"Tool '{name}' (pid {process.pid}) did not exit after being killed")
            raise

        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")
        returncode = process.returncode

        if returncode != 0:
            raise ToolError(f"Tool '{name}' exited with code {returncode}: {stderr.strip()[:200]}", name)
        if tool.failure_pattern and re.search(tool.failure_pattern, stdout + stderr):
            raise ToolError(f"Tool '{name}' output matched failure pattern '{tool.failure_pattern}'", name)
        if tool.success_pattern and not re.search(tool.success_pattern, stdout):
            raise ToolError(f"Tool '{name}' output did not match success pattern '{tool.success_pattern}'", name)

        return _decode_output(stdout, returncode)

    async def get_balances(self, asset_filter: Optional[str] = None) -> Any:
        return await self.run_tool("get_balances", {"asset_filter": asset_filter})

    async def get_pools(self, filter: Optional[str] = None) -> Any:
        return await self.run_tool("get_pools", {"filter": filter})

    async def get_pool(self, pool_id: str) -> Any:
        return await self.run_tool("get_pool", {"pool_id": pool_id})

    async def execute_swap(self, from_asset: str, to_asset: str, amount: str, slippage: str,
                           pool_id: Optional[str] = None, min_output: Optional[str] = None) -> Any:
        return await self.run_tool("execute_swap", {
            "from_asset": from_asset,
            "to_asset": to_asset,
            "amount": amount,
            "slippage": slippage,
            "pool_id": pool_id,
            "min_output": min_output,
        })

    async def provide_liquidity(self, pool_id: str, asset_a_amount: str, asset_b_amount: str) -> Any:
        return await self.run_tool("provide_liquidity", {
            "pool_id": pool_id,
            "asset_a_amount": asset_a_amount,
            "asset_b_amount": asset_b_amount,
        })

    async def withdraw_liquidity(self, pool_id: str, lp_amount: str) -> Any:
        return await self.run_tool("withdraw_liquidity", {"pool_id": pool_id, "lp_amount": lp_amount})

    async def create_pool(self, asset_a: str, asset_b: str, initial_price: str) -> Any:
        return await self.run_tool("create_pool", {
            "asset_a": asset_a,
            "asset_b": asset_b,
            "initial_price": initial_price,
        })

    async def monitor_transaction(self, tx_hash: str, timeout: int) -> Any:
        return await self.run_tool("monitor_transaction", {"tx_hash": tx_hash, "timeout": timeout})

    async def validate_network(self) -> Any:
        return await self.run_tool("validate_network", {})

    async def get_contracts(self) -> Any:
        return await self.run_tool("get_contracts", {})

    async def call_tool(self, tool_name: str, parameters: Dict[str, str]) -> Any:
        return await self.run_tool(tool_name, dict(parameters))
