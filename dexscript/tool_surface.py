"""
The tool surface is what actually performs each step.

The runner only knows this interface. Implementations talk to a chain,
a test double, or shell commands (see ``dexscript.command_tools``); they
return any JSON-like value on success and raise ``ToolError`` on failure.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class ToolError(Exception):
    """A tool surface operation failed."""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        self.tool_name = tool_name
        super().__init__(message)


class ToolSurface(ABC):
    """Async operations a script step can resolve to."""

    @abstractmethod
    async def get_balances(self, asset_filter: Optional[str] = None) -> Any:
        """Wallet balances, optionally restricted to a comma separated list of assets."""

    @abstractmethod
    async def get_pools(self, filter: Optional[str] = None) -> Any:
        pass

    @abstractmethod
    async def get_pool(self, pool_id: str) -> Any:
        pass

    @abstractmethod
    async def execute_swap(self, from_asset: str, to_asset: str, amount: str, slippage: str,
                           pool_id: Optional[str] = None, min_output: Optional[str] = None) -> Any:
        pass

    @abstractmethod
    async def provide_liquidity(self, pool_id: str, asset_a_amount: str, asset_b_amount: str) -> Any:
        pass

    @abstractmethod
    async def withdraw_liquidity(self, pool_id: str, lp_amount: str) -> Any:
        pass

    @abstractmethod
    async def create_pool(self, asset_a: str, asset_b: str, initial_price: str) -> Any:
        pass

    @abstractmethod
    async def monitor_transaction(self, tx_hash: str, timeout: int) -> Any:
        pass

    @abstractmethod
    async def validate_network(self) -> Any:
        pass

    @abstractmethod
    async def get_contracts(self) -> Any:
        pass

    @abstractmethod
    async def call_tool(self, tool_name: str, parameters: Dict[str, str]) -> Any:
        """Invokes a tool by name; used for custom steps."""
