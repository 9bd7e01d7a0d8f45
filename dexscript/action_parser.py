"""
Best-effort inference of a step action from its free-form description.

Classification is a plain keyword test on the lower-cased description; the
first matching rule wins and anything unmatched becomes a ``Custom`` action.
Each action kind has its own extractor which reads values from the step
text and from the step's ``key: value`` lines. Explicit values always beat
values found in the text, and fixed defaults are used only as a last resort.
"""
import re
from typing import Callable, Dict, List, Optional, Tuple

from dexscript.config import ActionDefaults
from dexscript.models import (
    CheckBalance,
    CreatePool,
    Custom,
    ExecuteSwap,
    GetContracts,
    GetPool,
    GetPools,
    MonitorTransaction,
    ProvideLiquidity,
    StepAction,
    ValidateNetwork,
    WithdrawLiquidity,
)

KNOWN_ASSETS = ["ATOM", "USDC", "USDT", "BTC", "ETH", "MANTRA", "OM"]

_NUMBER = r"(\d+(?:\.\d+)?)"
_ASSET = r"([A-Za-z][A-Za-z0-9/]*)"

_ASSET_RE = re.compile(r"\b(" + "|".join(KNOWN_ASSETS) + r")\b")
_SWAP_AMOUNT_RE = re.compile(r"\b(?:of|swap)\s+" + _NUMBER + r"\s*" + _ASSET, re.IGNORECASE)
_SWAP_TARGET_RE = re.compile(r"\b(?:for|into)\s+" + _ASSET, re.IGNORECASE)
_SLIPPAGE_BEFORE_RE = re.compile(_NUMBER + r"\s*%\s*(?:max(?:imum)?\s+)?slippage", re.IGNORECASE)
_SLIPPAGE_AFTER_RE = re.compile(r"slippage\s*(?:of|:)?\s*" + _NUMBER + r"\s*%?", re.IGNORECASE)
_FILTER_RE = re.compile(r"\b(?:find|filter(?:ed)?(?:\s+by)?)\s+([\w/-]+)", re.IGNORECASE)
_PAIR_RE = re.compile(r"\b([A-Za-z][A-Za-z0-9]*)/([A-Za-z][A-Za-z0-9]*)\b")
_POOL_ID_RE = re.compile(r"\bpool(?:\s+id)?\s*[:#]?\s*(\w*\d\w*)\b", re.IGNORECASE)
_TWO_AMOUNTS_RE = re.compile(_NUMBER + r"\s*[A-Za-z][A-Za-z0-9/]*\s+and\s+" + _NUMBER, re.IGNORECASE)
_LP_AMOUNT_RE = re.compile(_NUMBER + r"\s*(?:lp\b|lp[ _]tokens?\b|shares\b)", re.IGNORECASE)
_ASSET_AND_RE = re.compile(r"\b([A-Z][A-Z0-9]+)\s+and\s+([A-Z][A-Z0-9]+)\b")
_PRICE_RE = re.compile(r"\bprice\s*(?:of|:|=)?\s*" + _NUMBER, re.IGNORECASE)
_TX_HASH_RE = re.compile(r"\b((?:0x)?[A-Fa-f0-9]{16,})\b")

_NOT_ASSETS = {"the", "a", "an", "some", "pool"}


def _param(parameters: Dict[str, str], *names: str) -> Optional[str]:
    """Returns the first parameter present under any of ``names`` (keys compared case-insensitively)."""
    lowered = {key.strip().lower(): value for key, value in parameters.items()}
    for name in names:
        if name in lowered:
            return lowered[name]
    return None


def _first(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value is not None:
            return value
    return None


def _search(pattern: "re.Pattern[str]", text: str, group: int = 1) -> Optional[str]:
    match = pattern.search(text)
    return match.group(group) if match else None


def _pool_id_from_text(text: str) -> Optional[str]:
    pair = _PAIR_RE.search(text)
    if pair:
        return pair.group(0)
    return _search(_POOL_ID_RE, text)


# Classification

def _is_check_balance(desc: str) -> bool:
    return "check" in desc and "balance" in desc

def _is_get_pools(desc: str) -> bool:
    return "get" in desc and "pools" in desc

def _is_get_pool(desc: str) -> bool:
    return "get" in desc and "pool" in desc and "pools" not in desc

def _is_execute_swap(desc: str) -> bool:
    return "execute" in desc and "swap" in desc

def _is_provide_liquidity(desc: str) -> bool:
    return "provide" in desc and "liquidity" in desc

def _is_withdraw_liquidity(desc: str) -> bool:
    return "withdraw" in desc and "liquidity" in desc

def _is_create_pool(desc: str) -> bool:
    return "create" in desc and "pool" in desc

def _is_monitor_transaction(desc: str) -> bool:
    return "monitor" in desc and "transaction" in desc

def _is_validate_network(desc: str) -> bool:
    return "validate" in desc and "network" in desc

def _is_get_contracts(desc: str) -> bool:
    return "get" in desc and "contract" in desc


# Order matters: "get pools" must be tested before "get pool".
CLASSIFIERS: List[Tuple[str, Callable[[str], bool]]] = [
    ("check_balance", _is_check_balance),
    ("get_pools", _is_get_pools),
    ("get_pool", _is_get_pool),
    ("execute_swap", _is_execute_swap),
    ("provide_liquidity", _is_provide_liquidity),
    ("withdraw_liquidity", _is_withdraw_liquidity),
    ("create_pool", _is_create_pool),
    ("monitor_transaction", _is_monitor_transaction),
    ("validate_network", _is_validate_network),
    ("get_contracts", _is_get_contracts),
]


def classify_action(description: str) -> str:
    """Returns the action kind for a step description; ``"custom"`` when nothing matches."""
    desc = description.lower()
    for kind, predicate in CLASSIFIERS:
        if predicate(desc):
            return kind
    return "custom"


# Extraction, one function per action kind

def extract_check_balance(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> CheckBalance:
    explicit = _param(parameters, "assets", "asset")
    if explicit is not None:
        assets = [a.strip() for a in explicit.split(",") if a.strip()]
        return CheckBalance(assets=assets)

    assets: List[str] = []
    for match in _ASSET_RE.finditer(text.upper()):
        if match.group(1) not in assets:
            assets.append(match.group(1))
    return CheckBalance(assets=assets or [defaults.balance_asset])


def extract_get_pools(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> GetPools:
    return GetPools(filter=_first(_param(parameters, "filter"), _search(_FILTER_RE, text)))


def extract_get_pool(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> GetPool:
    pool_id = _first(_param(parameters, "pool_id", "pool"), _pool_id_from_text(text), defaults.pool_id)
    return GetPool(pool_id=pool_id)


def extract_execute_swap(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> ExecuteSwap:
    amount = from_asset = to_asset = None
    match = _SWAP_AMOUNT_RE.search(text)
    if match:
        amount, from_asset = match.group(1), match.group(2)
    target = _search(_SWAP_TARGET_RE, text)
    if target and target.lower() not in _NOT_ASSETS:
        to_asset = target
    slippage = _first(_search(_SLIPPAGE_BEFORE_RE, text), _search(_SLIPPAGE_AFTER_RE, text))

    return ExecuteSwap(
        from_asset=_first(_param(parameters, "from_asset", "from"), from_asset, defaults.swap_from_asset),
        to_asset=_first(_param(parameters, "to_asset", "to"), to_asset, defaults.swap_to_asset),
        amount=_first(_param(parameters, "amount"), amount, defaults.swap_amount),
        slippage=_first(_param(parameters, "slippage", "max_slippage"), slippage, defaults.swap_slippage),
        pool_id=_param(parameters, "pool_id"),
        min_output=_param(parameters, "min_output"),
    )


def extract_provide_liquidity(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> ProvideLiquidity:
    amount_a = amount_b = None
    match = _TWO_AMOUNTS_RE.search(text)
    if match:
        amount_a, amount_b = match.group(1), match.group(2)
    return ProvideLiquidity(
        pool_id=_first(_param(parameters, "pool_id"), _search(_POOL_ID_RE, text), defaults.pool_id),
        asset_a_amount=_first(_param(parameters, "asset_a_amount"), amount_a, defaults.liquidity_amount),
        asset_b_amount=_first(_param(parameters, "asset_b_amount"), amount_b, defaults.liquidity_amount),
    )


def extract_withdraw_liquidity(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> WithdrawLiquidity:
    return WithdrawLiquidity(
        pool_id=_first(_param(parameters, "pool_id"), _search(_POOL_ID_RE, text), defaults.pool_id),
        lp_amount=_first(_param(parameters, "lp_amount"), _search(_LP_AMOUNT_RE, text), defaults.lp_amount),
    )


def extract_create_pool(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> CreatePool:
    asset_a = asset_b = None
    match = _PAIR_RE.search(text) or _ASSET_AND_RE.search(text)
    if match:
        asset_a, asset_b = match.group(1), match.group(2)
    return CreatePool(
        asset_a=_first(_param(parameters, "asset_a"), asset_a, defaults.pool_asset_a),
        asset_b=_first(_param(parameters, "asset_b"), asset_b, defaults.pool_asset_b),
        initial_price=_first(_param(parameters, "initial_price", "price"), _search(_PRICE_RE, text),
                             defaults.initial_price),
    )


def extract_monitor_transaction(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> MonitorTransaction:
    timeout = defaults.monitor_timeout
    raw_timeout = _param(parameters, "timeout")
    if raw_timeout is not None:
        try:
            timeout = int(raw_timeout.strip())
        except ValueError:
            pass
    tx_hash = _first(_param(parameters, "tx_hash", "hash"), _search(_TX_HASH_RE, text), "")
    return MonitorTransaction(tx_hash=tx_hash, timeout=timeout)


def extract_validate_network(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> ValidateNetwork:
    return ValidateNetwork()


def extract_get_contracts(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> GetContracts:
    return GetContracts()


def extract_custom(text: str, parameters: Dict[str, str], defaults: ActionDefaults) -> Custom:
    tool_name = _param(parameters, "tool", "tool_name") or "unknown"
    return Custom(tool_name=tool_name, parameters=dict(parameters))


EXTRACTORS: Dict[str, Callable[[str, Dict[str, str], ActionDefaults], StepAction]] = {
    "check_balance": extract_check_balance,
    "get_pools": extract_get_pools,
    "get_pool": extract_get_pool,
    "execute_swap": extract_execute_swap,
    "provide_liquidity": extract_provide_liquidity,
    "withdraw_liquidity": extract_withdraw_liquidity,
    "create_pool": extract_create_pool,
    "monitor_transaction": extract_monitor_transaction,
    "validate_network": extract_validate_network,
    "get_contracts": extract_get_contracts,
    "custom": extract_custom,
}


def parse_step_action(description: str,
                      parameters: Optional[Dict[str, str]] = None,
                      text: Optional[str] = None,
                      defaults: Optional[ActionDefaults] = None) -> StepAction:
    """
    Infers the action of a step.

    ``description`` decides the kind of action. Values are read from
    ``text``, which defaults to the description.
    """
    kind = classify_action(description)
    extractor = EXTRACTORS[kind]
    return extractor(text if text is not None else description, parameters or {}, defaults or ActionDefaults())
