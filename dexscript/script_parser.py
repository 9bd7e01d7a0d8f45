"""
Parser for Markdown test scripts.

A script looks like::

    # Test Script: Basic Swap Test
    ## Setup
    - Network: mantra-dukong
    ## Steps
    1. **Check wallet balance** for ATOM and USDC
    2. **Execute swap** of 10 ATOM for USDC with 1% slippage
       pool_id: 1
       Expected: swap success
       Timeout: 60
    ## Expected Results
    - Swap should complete successfully
    ## Metadata
    author: qa

The parser is forgiving on purpose: lines it does not understand are
skipped and steps it cannot classify become custom actions. Only a
missing title, a missing Steps section or an empty network are errors.
"""
import re
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from dexscript.action_parser import parse_step_action
from dexscript.config import ParserSettings
from dexscript.errors import (
    FileReadError,
    InvalidFormat,
    InvalidStep,
    MissingSection,
)
from dexscript.logger import log
from dexscript.models import ScriptSetup, TestScript, TestStep, WalletConfig

MAX_SCRIPT_FILE_SIZE = 1024 * 1024
MAX_STEPS = 100
MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_TIMEOUT_SECONDS = 300

_STEP_MARKER_RE = re.compile(r"^\d{1,2}\.")
_TITLE_TOKEN_RE = re.compile(r"test script:", re.IGNORECASE)
_BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
_ASSET_PARAM_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9]*$")


class ScriptSection(Enum):
    NONE = "none"
    TITLE = "title"
    SETUP = "setup"
    STEPS = "steps"
    EXPECTED_RESULTS = "expected results"
    METADATA = "metadata"


_SECTION_HEADINGS = {
    "setup": ScriptSection.SETUP,
    "steps": ScriptSection.STEPS,
    "expected results": ScriptSection.EXPECTED_RESULTS,
    "metadata": ScriptSection.METADATA,
}


def _strip_bullet(line: str) -> str:
    if line[:1] in ("-", "*") and not line.startswith("**"):
        return line[1:].strip()
    return line


def split_key_value(line: str) -> Optional[Tuple[str, str]]:
    """Splits ``key: value`` on the first colon. Returns None for lines without one."""
    if ":" not in line:
        return None
    key, value = line.split(":", 1)
    return key.strip(), value.strip()


def extract_step_description(line: str) -> str:
    """
    Returns the step title from its first line.
    The ordinal is dropped and a leading ``**bold**`` span becomes the whole description.
    """
    if "." not in line:
        return line.strip()
    desc = line.split(".", 1)[1].strip()
    if desc.startswith("**"):
        match = _BOLD_RE.match(desc)
        if match:
            return match.group(1).strip()
    return desc


class _SetupBuilder:
    """Collects Setup lines, leaving defaults in place for empty values."""

    def __init__(self, settings: ParserSettings):
        self.network = settings.default_network
        self.wallet_type = settings.default_wallet_type
        self.wallet_identifier: Optional[str] = None
        self.minimum_balances: Dict[str, str] = {}
        self.parameters: Dict[str, str] = {}

    def add_line(self, line: str):
        pair = split_key_value(_strip_bullet(line))
        if pair is None:
            return
        key, value = pair
        key = key.lower()
        if not value:
            return
        if key == "network":
            self.network = value
        elif key in ("wallet", "wallet_type"):
            self.wallet_type = value
        elif key == "wallet_identifier":
            self.wallet_identifier = value
        elif key.startswith("min_balance_") or key.startswith("minimum_balance_"):
            asset = key.split("balance_", 1)[1].upper()
            self.minimum_balances[asset] = value
        else:
            self.parameters[key] = value

    def build(self) -> ScriptSetup:
        return ScriptSetup(
            network=self.network,
            wallet=WalletConfig(
                wallet_type=self.wallet_type,
                identifier=self.wallet_identifier,
                minimum_balances=self.minimum_balances,
            ),
            parameters=self.parameters,
        )


class ScriptParser:
    """
    Turns Markdown text into a TestScript.
    """
    def __init__(self, settings: Optional[ParserSettings] = None):
        self.settings = settings or ParserSettings()

    def parse_file(self, path: Union[str, Path]) -> TestScript:
        """Reads and parses a script file. Files over 1 MiB are rejected."""
        script_path = Path(path)
        try:
            size = script_path.stat().st_size
            if size > MAX_SCRIPT_FILE_SIZE:
                raise InvalidFormat(
                    f"Script file is too large: {size} bytes (max: {MAX_SCRIPT_FILE_SIZE} bytes)"
                )
            content = script_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FileReadError(str(script_path), e) from e
        log.debug(f"Loaded script file {script_path} ({size} bytes)")
        return self.parse_content(content)

    def parse_content(self, content: str) -> TestScript:
        name = ""
        description_lines: List[str] = []
        setup = _SetupBuilder(self.settings)
        steps: List[TestStep] = []
        expected_results: List[str] = []
        metadata: Dict[str, str] = {}

        section = ScriptSection.NONE
        step_lines: List[str] = []
        step_start = 0

        def flush_step(line_num: int):
            if step_lines:
                steps.append(self.parse_step(len(steps) + 1, step_lines, line_num))
                step_lines.clear()

        lines = content.splitlines()
        for line_num, raw_line in enumerate(lines, 1):
            line = raw_line.strip()
            if not line:
                continue

            if line.startswith("#"):
                flush_step(step_start)
                heading = line.lstrip("#").strip()
                lowered = heading.lower()
                if "test script:" in lowered:
                    name = _TITLE_TOKEN_RE.sub("", heading).strip()
                    section = ScriptSection.TITLE
                elif lowered in _SECTION_HEADINGS:
                    section = _SECTION_HEADINGS[lowered]
                elif line.startswith("# ") and not name:
                    name = heading
                    section = ScriptSection.TITLE
                else:
                    log.debug(f"Ignoring section '{heading}' at line {line_num}")
                    section = ScriptSection.NONE
                continue

            if section is ScriptSection.TITLE:
                description_lines.append(line)
            elif section is ScriptSection.SETUP:
                setup.add_line(line)
            elif section is ScriptSection.STEPS:
                if _STEP_MARKER_RE.match(line):
                    flush_step(step_start)
                if not step_lines:
                    step_start = line_num
                step_lines.append(line)
            elif section is ScriptSection.EXPECTED_RESULTS:
                expected_results.append(line[1:].strip() if line.startswith("-") else line)
            elif section is ScriptSection.METADATA:
                pair = split_key_value(line)
                if pair is not None:
                    metadata[pair[0]] = pair[1]

        flush_step(step_start)

        script_setup = setup.build()
        self.validate_script(name, steps, script_setup)
        script = TestScript(
            name=name,
            description=" ".join(description_lines) or None,
            setup=script_setup,
            steps=steps,
            expected_results=expected_results,
            metadata=metadata,
        )
        log.debug(f"Parsed script '{script.name}' with {len(script.steps)} steps")
        return script

    def parse_step(self, step_number: int, lines: List[str], line_num: int = 0) -> TestStep:
        """Builds a TestStep from its header line and continuation lines."""
        if not lines:
            raise InvalidStep(line_num, "Empty step")

        header = lines[0]
        description = extract_step_description(header)
        parameters: Dict[str, str] = {}
        expected_outcome: Optional[str] = None
        timeout: Optional[int] = None

        for line in lines[1:]:
            if line.startswith("Expected:"):
                expected_outcome = line[len("Expected:"):].strip()
            elif line.startswith("Timeout:"):
                value = line[len("Timeout:"):].strip()
                if value.isdecimal():
                    timeout = int(value)
                else:
                    log.warning(f"Ignoring invalid timeout '{value}' in step {step_number}")
            else:
                pair = split_key_value(_strip_bullet(line))
                if pair is not None:
                    parameters[pair[0]] = pair[1]

        action = parse_step_action(description, parameters, defaults=self.settings.action_defaults)
        log.debug(f"Step {step_number}: '{description}' -> {action.kind}")
        return TestStep(
            step_number=step_number,
            description=description,
            action=action,
            parameters=parameters,
            expected_outcome=expected_outcome,
            timeout=timeout,
        )

    @staticmethod
    def validate_script(name: str, steps: List[TestStep], setup: ScriptSetup):
        """Checks the structural invariants every parsed script must meet."""
        if not name:
            raise MissingSection("name")
        if not steps:
            raise MissingSection("steps")
        if not setup.network:
            raise InvalidFormat("Network must be specified")

    def validate_script_for_execution(self, script: TestScript):
        """
        Stricter checks run before executing a script.
        Raises InvalidFormat on the first problem found.
        """
        if len(script.steps) > MAX_STEPS:
            raise InvalidFormat(f"Script has too many steps: {len(script.steps)} (max: {MAX_STEPS})")
        if len(script.name) > MAX_NAME_LENGTH:
            raise InvalidFormat(f"Script name is too long: {len(script.name)} characters (max: {MAX_NAME_LENGTH})")
        if script.description and len(script.description) > MAX_DESCRIPTION_LENGTH:
            raise InvalidFormat(
                f"Script description is too long: {len(script.description)} characters "
                f"(max: {MAX_DESCRIPTION_LENGTH})"
            )
        allowed = self.settings.allowed_networks
        if allowed and script.setup.network not in allowed:
            raise InvalidFormat(f"Invalid network '{script.setup.network}'. Valid networks: {allowed}")

        for key, value in script.setup.parameters.items():
            if "timeout" in key:
                _check_timeout(f"Setup parameter '{key}'", value)

        for index, step in enumerate(script.steps, 1):
            if step.step_number != index:
                raise InvalidFormat(
                    f"Step number mismatch at position {index}: expected {index}, got {step.step_number}"
                )
            if not step.description.strip():
                raise InvalidFormat(f"Step {step.step_number} description cannot be empty")
            for key, value in step.parameters.items():
                _check_step_parameter(step.step_number, key.lower(), value)


def _check_timeout(label: str, value: str):
    if not value.strip().isdecimal():
        raise InvalidFormat(f"{label} must be a valid number of seconds, got: '{value}'")
    seconds = int(value)
    if seconds == 0 or seconds > MAX_TIMEOUT_SECONDS:
        raise InvalidFormat(f"{label} must be between 1 and {MAX_TIMEOUT_SECONDS} seconds, got: {seconds}")


def _check_step_parameter(step_number: int, key: str, value: str):
    label = f"Step {step_number} parameter '{key}'"
    if not value.strip():
        raise InvalidFormat(f"{label} cannot be empty")
    if "timeout" in key:
        _check_timeout(label, value)
    if "amount" in key:
        try:
            float(value)
        except ValueError:
            raise InvalidFormat(f"{label} must be a valid number: '{value}'") from None
    if "slippage" in key:
        try:
            slippage = float(value)
        except ValueError:
            raise InvalidFormat(f"{label} must be a valid number: '{value}'") from None
        if not 0.0 <= slippage <= 100.0:
            raise InvalidFormat(f"{label} must be between 0 and 100: '{value}'")
    if "asset" in key and "amount" not in key and not value.startswith(("ibc/", "factory/")):
        if not _ASSET_PARAM_RE.match(value):
            raise InvalidFormat(
                f"{label} has invalid format: '{value}'. Assets should start with a letter and "
                f"contain only alphanumeric characters, or be IBC/factory tokens"
            )


def parse_script(content: str, settings: Optional[ParserSettings] = None) -> TestScript:
    return ScriptParser(settings).parse_content(content)


def parse_script_file(path: Union[str, Path], settings: Optional[ParserSettings] = None) -> TestScript:
    return ScriptParser(settings).parse_file(path)


def load_scripts_from_directory(directory: str,
                                settings: Optional[ParserSettings] = None) -> Dict[str, TestScript]:
    """
    Parses every *.md file in a directory and returns the scripts keyed by name.
    Files that are not valid scripts are skipped with a warning.
    """
    script_dir = Path(directory)
    scripts: Dict[str, TestScript] = {}
    if not script_dir.is_dir():
        return scripts

    parser = ScriptParser(settings)
    for script_file in sorted(script_dir.glob("*.md")):
        try:
            script = parser.parse_file(script_file)
        except (MissingSection, InvalidFormat, FileReadError) as e:
            log.warning(f"Skipping {script_file.name}: {e}")
            continue
        if script.name in scripts:
            log.warning(f"Duplicate script name '{script.name}' in {script_file.name}, keeping the later one")
        scripts[script.name] = script
    return scripts
