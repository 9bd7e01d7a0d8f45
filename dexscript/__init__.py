"""
dexscript: declarative Markdown test scripts for DEX operations.
"""
from dexscript.__version__ import __version__
from dexscript.config import EngineConfig, ParserSettings, ScriptExecutionConfig, load_config
from dexscript.models import TestScript, TestStep
from dexscript.results import ExecutionStatus, ScriptExecutionResult, StepExecutionResult
from dexscript.runner import ScriptRunner, execute_script, run_script_file
from dexscript.script_parser import ScriptParser, parse_script, parse_script_file
from dexscript.tool_surface import ToolError, ToolSurface

__all__ = [
    "__version__",
    "EngineConfig",
    "ExecutionStatus",
    "ParserSettings",
    "ScriptExecutionConfig",
    "ScriptExecutionResult",
    "ScriptParser",
    "ScriptRunner",
    "StepExecutionResult",
    "TestScript",
    "TestStep",
    "ToolError",
    "ToolSurface",
    "execute_script",
    "load_config",
    "parse_script",
    "parse_script_file",
    "run_script_file",
]
