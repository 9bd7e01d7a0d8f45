from unittest.mock import AsyncMock

import pytest

from dexscript.tool_surface import ToolSurface

BASIC_SWAP_SCRIPT = """# Test Script: Basic Swap Test
## Setup
- Network: mantra-dukong
## Steps
1. **Check wallet balance** for ATOM and USDC
2. **Execute swap** of 10 ATOM for USDC with 1% slippage
## Expected Results
- Swap should complete successfully
"""


@pytest.fixture
def basic_swap_text() -> str:
    return BASIC_SWAP_SCRIPT


@pytest.fixture
def tools() -> AsyncMock:
    """A tool surface whose operations all succeed with small JSON payloads."""
    surface = AsyncMock(spec=ToolSurface)
    surface.get_balances.return_value = {"balances": [{"denom": "ATOM", "amount": "1000"}]}
    surface.get_pools.return_value = {"pools": [{"pool_id": "1"}]}
    surface.get_pool.return_value = {"pool_id": "1", "assets": ["ATOM", "USDC"]}
    surface.execute_swap.return_value = {"status": "success", "tx_hash": "ABC123"}
    surface.provide_liquidity.return_value = {"status": "success"}
    surface.withdraw_liquidity.return_value = {"status": "success"}
    surface.create_pool.return_value = {"status": "success", "pool_id": "9"}
    surface.monitor_transaction.return_value = {"status": "confirmed"}
    surface.validate_network.return_value = {"status": "ok"}
    surface.get_contracts.return_value = {"contracts": []}
    surface.call_tool.return_value = {"status": "ok"}
    return surface


@pytest.fixture(autouse=True)
def restore_log_level():
    """CLI commands change the package log level; put it back after each test."""
    from dexscript.logger import log
    level = log.level
    yield
    log.setLevel(level)
