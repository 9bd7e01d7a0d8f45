from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, model_validator

DEFAULT_NETWORK = "mantra-dukong"
DEFAULT_WALLET_TYPE = "test"


class WalletConfig(BaseModel):
    """Wallet used while running a script."""
    wallet_type: str = DEFAULT_WALLET_TYPE   # "test", "mnemonic", ...
    identifier: Optional[str] = None         # Path or reference
    minimum_balances: Dict[str, str] = Field(default_factory=dict)  # Asset -> minimum amount


class ScriptSetup(BaseModel):
    """The Setup section of a script."""
    network: str = DEFAULT_NETWORK
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    parameters: Dict[str, str] = Field(default_factory=dict)


# Step actions. Each variant only carries what the tool surface needs.

class CheckBalance(BaseModel):
    kind: Literal["check_balance"] = "check_balance"
    assets: List[str] = Field(default_factory=list)

class GetPools(BaseModel):
    kind: Literal["get_pools"] = "get_pools"
    filter: Optional[str] = None

class GetPool(BaseModel):
    kind: Literal["get_pool"] = "get_pool"
    pool_id: str

class ExecuteSwap(BaseModel):
    kind: Literal["execute_swap"] = "execute_swap"
    from_asset: str
    to_asset: str
    amount: str
    slippage: str
    pool_id: Optional[str] = None
    min_output: Optional[str] = None

class ProvideLiquidity(BaseModel):
    kind: Literal["provide_liquidity"] = "provide_liquidity"
    pool_id: str
    asset_a_amount: str
    asset_b_amount: str

class WithdrawLiquidity(BaseModel):
    kind: Literal["withdraw_liquidity"] = "withdraw_liquidity"
    pool_id: str
    lp_amount: str

class CreatePool(BaseModel):
    kind: Literal["create_pool"] = "create_pool"
    asset_a: str
    asset_b: str
    initial_price: str

class MonitorTransaction(BaseModel):
    kind: Literal["monitor_transaction"] = "monitor_transaction"
    tx_hash: str
    timeout: int = 30

class ValidateNetwork(BaseModel):
    kind: Literal["validate_network"] = "validate_network"

class GetContracts(BaseModel):
    kind: Literal["get_contracts"] = "get_contracts"

class Custom(BaseModel):
    kind: Literal["custom"] = "custom"
    tool_name: str = "unknown"
    parameters: Dict[str, str] = Field(default_factory=dict)


StepAction = Annotated[
    Union[
        CheckBalance,
        GetPools,
        GetPool,
        ExecuteSwap,
        ProvideLiquidity,
        WithdrawLiquidity,
        CreatePool,
        MonitorTransaction,
        ValidateNetwork,
        GetContracts,
        Custom,
    ],
    Field(discriminator="kind"),
]


class TestStep(BaseModel):
    """A numbered step of a script."""
    __test__ = False  # Not a pytest class

    step_number: int = Field(ge=1)
    description: str = ""
    action: StepAction
    parameters: Dict[str, str] = Field(default_factory=dict)
    expected_outcome: Optional[str] = None
    timeout: Optional[int] = Field(default=None, ge=0)  # Seconds, overrides the default step timeout


class TestScript(BaseModel):
    """A parsed test script."""
    __test__ = False

    name: str
    description: Optional[str] = None
    setup: ScriptSetup = Field(default_factory=ScriptSetup)
    steps: List[TestStep]
    expected_results: List[str] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_structure(self) -> "TestScript":
        if not self.name.strip():
            raise ValueError("script name must not be empty")
        if not self.steps:
            raise ValueError("script must contain at least one step")
        if not self.setup.network.strip():
            raise ValueError("setup network must not be empty")
        return self


# Command tool definitions (*.tool.yml)

class ToolParameter(BaseModel):
    """A parameter accepted by a command tool."""
    required: bool = False
    default: Any = None
    help: Optional[str] = None


class ToolDefinition(BaseModel):
    """A shell command that implements one tool surface operation."""
    name: str
    description: Optional[str] = None
    parameters: Dict[str, ToolParameter] = Field(default_factory=dict)
    command_template: str
    success_pattern: Optional[str] = None
    failure_pattern: Optional[str] = None
    timeout: Optional[int] = Field(default=None, gt=0)
