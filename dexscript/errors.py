"""
Errors raised while loading and parsing test scripts.

Only structural problems are reported here. Step text that cannot be
understood is never an error; it becomes a custom action instead.
"""
from typing import Optional


class ScriptParseError(Exception):
    """Base class for script parsing errors."""


class FileReadError(ScriptParseError):
    """The script file could not be read."""

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        message = f"Failed to read script file '{path}'"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class InvalidFormat(ScriptParseError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid script format: {reason}")


class MissingSection(ScriptParseError):
    def __init__(self, section: str):
        self.section = section
        super().__init__(f"Missing required section: {section}")


class InvalidStep(ScriptParseError):
    def __init__(self, line: int, msg: str):
        self.line = line
        self.msg = msg
        super().__init__(f"Invalid step format at line {line}: {msg}")


class UnsupportedAction(ScriptParseError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unsupported action: {name}")


class InvalidParameter(ScriptParseError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid parameter: {reason}")
