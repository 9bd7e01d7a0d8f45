"""
Configuration for parsing and running scripts.

Everything can be built in code or loaded from a YAML file::

    execution:
      max_script_timeout: 120
      continue_on_failure: true
    parser:
      default_network: mantra-dukong
      action_defaults:
        swap_amount: "5"
"""
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator

from dexscript.models import DEFAULT_NETWORK, DEFAULT_WALLET_TYPE

KNOWN_NETWORKS = ["mantra-dukong", "mantra-hongbai", "mantra-mainnet", "testnet", "mainnet"]


class ActionDefaults(BaseModel):
    """Fallback values used when neither the step text nor its parameters give one."""
    balance_asset: str = "ATOM"
    swap_from_asset: str = "ATOM"
    swap_to_asset: str = "USDC"
    swap_amount: str = "10"
    swap_slippage: str = "1"
    pool_id: str = "1"
    liquidity_amount: str = "100"
    lp_amount: str = "50"
    pool_asset_a: str = "ATOM"
    pool_asset_b: str = "USDC"
    initial_price: str = "1.0"
    monitor_timeout: int = 30


class ParserSettings(BaseModel):
    default_network: str = DEFAULT_NETWORK
    default_wallet_type: str = DEFAULT_WALLET_TYPE
    allowed_networks: List[str] = Field(default_factory=lambda: list(KNOWN_NETWORKS))
    action_defaults: ActionDefaults = Field(default_factory=ActionDefaults)


class ScriptExecutionConfig(BaseModel):
    """How a script is run."""
    max_script_timeout: int = Field(default=300, gt=0, le=3600)  # Seconds for the whole script
    default_step_timeout: int = Field(default=30, gt=0)          # Seconds, unless the step sets its own
    continue_on_failure: bool = False
    validate_outcomes: bool = True
    collect_metrics: bool = True

    @model_validator(mode="after")
    def _check_timeouts(self) -> "ScriptExecutionConfig":
        if self.default_step_timeout > self.max_script_timeout:
            raise ValueError("default_step_timeout cannot exceed max_script_timeout")
        return self


class EngineConfig(BaseModel):
    execution: ScriptExecutionConfig = Field(default_factory=ScriptExecutionConfig)
    parser: ParserSettings = Field(default_factory=ParserSettings)


def load_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Loads an EngineConfig from a YAML file.
    Returns the defaults when no path is given; an empty file is also valid.
    """
    if path is None:
        return EngineConfig()
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return EngineConfig.model_validate(data or {})
