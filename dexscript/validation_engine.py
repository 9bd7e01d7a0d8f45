"""
Outcome validation for script steps.

An expected outcome is free text written by the script author, so the
comparison is deliberately loose. Strategies are tried in order and the
first one that applies decides:

1. ``regex:<pattern>`` or ``/<pattern>/``
2. structured data: JSON such as ``{"status": "ok"}``. Objects match when
   their keys are a subset of the actual object, arrays match element by
   element and scalars by equality
3. numeric comparisons such as ``> 100``, ``<= 5`` or ``10 - 20``
4. domain keywords ("success", "balance", "pool", "swap")
5. case-insensitive substring match
"""
import json
import re
from typing import Any, Callable, List, Optional, Tuple

from dexscript.logger import log
from dexscript.results import OutcomeValidation

_NUMERIC_PATTERNS = [
    (re.compile(r"^>=\s*(-?\d+(?:\.\d+)?)$"), ">="),
    (re.compile(r"^<=\s*(-?\d+(?:\.\d+)?)$"), "<="),
    (re.compile(r"^>\s*(-?\d+(?:\.\d+)?)$"), ">"),
    (re.compile(r"^<\s*(-?\d+(?:\.\d+)?)$"), "<"),
    (re.compile(r"^=\s*(-?\d+(?:\.\d+)?)$"), "="),
    (re.compile(r"^(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)$"), "range"),
]

# keyword in the expected text -> words any of which must appear in the actual text
KEYWORD_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("success", ("success", "ok")),
    ("balance", ("balance", "amount")),
    ("pool", ("pool",)),
    ("swap", ("swap", "trade")),
]


def _structure_matches(expected: Any, actual: Any) -> bool:
    """Expected objects may leave keys out; arrays must match in length and order."""
    if isinstance(expected, dict):
        return isinstance(actual, dict) and all(
            key in actual and _structure_matches(value, actual[key]) for key, value in expected.items()
        )
    if isinstance(expected, list):
        return (isinstance(actual, (list, tuple)) and len(expected) == len(actual)
                and all(_structure_matches(e, a) for e, a in zip(expected, actual)))
    if isinstance(expected, bool) or isinstance(actual, bool):
        return expected is actual
    return expected == actual


def stringify_result(value: Any) -> str:
    """Renders a tool result for comparison. Strings are kept as they are."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str, sort_keys=True)
    except (TypeError, ValueError):
        return str(value)


class OutcomeValidator:
    """Compares an expected outcome with the value a tool returned."""

    def __init__(self):
        self.strategies: List[Tuple[str, Callable[[str, Any, str], Optional[bool]]]] = [
            ("regex pattern", self._validate_regex),
            ("structured data", self._validate_structured),
            ("numeric comparison", self._validate_numeric),
            ("keyword rules", self._validate_keywords),
            ("substring match", self._validate_substring),
        ]

    def validate(self, expected: str, actual: Any) -> OutcomeValidation:
        actual_str = stringify_result(actual)
        for strategy, check in self.strategies:
            matches = check(expected.strip(), actual, actual_str)
            if matches is None:
                continue
            log.debug(f"Outcome '{expected}' checked with {strategy}: {'match' if matches else 'mismatch'}")
            return OutcomeValidation(
                expected=expected,
                actual=actual_str,
                matches=matches,
                notes=f"Validated using: {strategy}",
            )
        return OutcomeValidation(expected=expected, actual=actual_str, matches=False, notes="no strategy applied")

    def _validate_regex(self, expected: str, actual: Any, actual_str: str) -> Optional[bool]:
        if expected.startswith("regex:"):
            pattern = expected[len("regex:"):]
        elif len(expected) > 2 and expected.startswith("/") and expected.endswith("/"):
            pattern = expected[1:-1]
        else:
            return None
        try:
            return re.search(pattern, actual_str) is not None
        except re.error as e:
            log.warning(f"Invalid regex in expected outcome '{expected}': {e}")
            return None

    def _validate_structured(self, expected: str, actual: Any, actual_str: str) -> Optional[bool]:
        try:
            expected_data = json.loads(expected)
        except json.JSONDecodeError:
            return None

        if isinstance(expected_data, (dict, list)):
            if not isinstance(actual, (dict, list)):
                try:
                    actual = json.loads(actual_str)
                except json.JSONDecodeError:
                    return False
            return _structure_matches(expected_data, actual)

        # Bare scalars only compare against scalar results; "100" vs "pool 100" stays a text check.
        if actual is None or isinstance(actual, (bool, int, float)):
            return _structure_matches(expected_data, actual)
        return None

    def _validate_numeric(self, expected: str, actual: Any, actual_str: str) -> Optional[bool]:
        for pattern, op in _NUMERIC_PATTERNS:
            match = pattern.match(expected)
            if not match:
                continue
            if isinstance(actual, bool):
                return None
            try:
                value = float(actual) if isinstance(actual, (int, float)) else float(actual_str.strip())
            except ValueError:
                return None
            if op == "range":
                return float(match.group(1)) <= value <= float(match.group(2))
            threshold = float(match.group(1))
            if op == ">=":
                return value >= threshold
            if op == "<=":
                return value <= threshold
            if op == ">":
                return value > threshold
            if op == "<":
                return value < threshold
            return abs(value - threshold) < 1e-9
        return None

    def _validate_keywords(self, expected: str, actual: Any, actual_str: str) -> Optional[bool]:
        expected_lower = expected.lower()
        actual_lower = actual_str.lower()
        for keyword, indicators in KEYWORD_RULES:
            if keyword in expected_lower:
                return any(word in actual_lower for word in indicators)
        return None

    def _validate_substring(self, expected: str, actual: Any, actual_str: str) -> Optional[bool]:
        return expected.lower() in actual_str.lower()


_default_validator = OutcomeValidator()


def validate_outcome(expected: str, actual: Any) -> OutcomeValidation:
    return _default_validator.validate(expected, actual)
