"""
OpsGate Configuration.
Loads the gating policy, budgets and trading limits from a JSON file plus
environment overrides, and validates resource scopes.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigError
from .state_dir import get_state_dir

logger = logging.getLogger("OpsGate.config")

CONFIG_PATH_ENV = "OPSGATE_CONFIG_PATH"

RESOURCE_SCOPE_RE = re.compile(r"^[a-z0-9_*]+:[a-zA-Z0-9*._-]+$")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ChatClass(str, Enum):
    ADMIN = "admin"  # control chats
    PUBLIC = "public"  # collaboration chats


@dataclass
class PolicyRole:
    """Who may perform one action (request or approve) on a resource scope."""

    chat_classes: List[ChatClass] = field(default_factory=list)
    # User ids, "id:<userId>" or "@username" entries
    users: List[str] = field(default_factory=list)


@dataclass
class PolicyConfig:
    """
    Declarative rule for a resource scope.

    `resource` is "type:id" where either segment may be "*",
    e.g. "ledger:finance" or "cron_proposal:*".
    """

    resource: str
    request: Optional[PolicyRole] = None
    approve: Optional[PolicyRole] = None


@dataclass
class GatingConfig:
    enabled: bool = True
    admin_chats: List[str] = field(default_factory=list)
    public_chats: List[str] = field(default_factory=list)
    policies: List[PolicyConfig] = field(default_factory=list)
    allow_public_view_for_cron_proposals: bool = False
    notify_execution_failures: bool = False


@dataclass
class BudgetsConfig:
    max_daily_tokens: Optional[int] = None
    max_single_run_cost_usd: Optional[float] = None


@dataclass
class KrakenConfig:
    enabled: bool = False
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    allowed_symbols: List[str] = field(default_factory=list)
    max_order_usd: Optional[float] = None
    max_order_asset: Dict[str, float] = field(default_factory=dict)
    api_url: str = "https://api.kraken.com"
    timeout_sec: int = 30

    def __repr__(self):
        """Redact secret/key fields in logs and debug output."""
        d = self.__dict__.copy()
        for k in d:
            if "secret" in k or "key" in k:
                if d[k]:
                    d[k] = "***REDACTED***"
        fields = ", ".join(f"{k}={v!r}" for k, v in d.items())
        return f"{self.__class__.__name__}({fields})"


@dataclass
class OpsGateConfig:
    # None means the gating module is not configured at all (treated as disabled)
    gating: Optional[GatingConfig] = None
    budgets: Optional[BudgetsConfig] = None
    kraken: KrakenConfig = field(default_factory=KrakenConfig)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _require_mapping(value: Any, where: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{where} must be an object")
    return value


def _reject_unknown(data: Mapping[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"Unknown keys in {where}: {', '.join(unknown)}")


def normalize_chat_id(value: Any) -> str:
    """Chat ids are compared as strings; ints are truncated, strings stripped."""
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(int(value))
    if isinstance(value, str):
        return value.strip()
    return ""


def _parse_chat_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{where} must be a list of chat ids")
    return [c for c in (normalize_chat_id(v) for v in value) if c]


def parse_policy_role(data: Any, where: str) -> Optional[PolicyRole]:
    if data is None:
        return None
    data = _require_mapping(data, where)
    _reject_unknown(data, {"chat_classes", "users"}, where)
    try:
        chat_classes = [ChatClass(c) for c in data.get("chat_classes") or []]
    except ValueError as e:
        raise ConfigError(f"{where}.chat_classes: {e}") from e
    users = data.get("users") or []
    if not isinstance(users, list) or not all(isinstance(u, str) for u in users):
        raise ConfigError(f"{where}.users must be a list of strings")
    return PolicyRole(chat_classes=chat_classes, users=list(users))


def parse_policy(data: Any, index: int = 0) -> PolicyConfig:
    where = f"gating.policies[{index}]"
    data = _require_mapping(data, where)
    _reject_unknown(data, {"resource", "request", "approve"}, where)
    resource = data.get("resource")
    if not isinstance(resource, str) or not RESOURCE_SCOPE_RE.match(resource):
        raise ConfigError(f"{where}.resource must be type:id (got {resource!r})")
    return PolicyConfig(
        resource=resource,
        request=parse_policy_role(data.get("request"), f"{where}.request"),
        approve=parse_policy_role(data.get("approve"), f"{where}.approve"),
    )


def parse_gating(data: Any) -> GatingConfig:
    data = _require_mapping(data, "gating")
    _reject_unknown(
        data,
        {
            "enabled",
            "admin_chats",
            "public_chats",
            "policies",
            "allow_public_view_for_cron_proposals",
            "notify_execution_failures",
        },
        "gating",
    )
    policies = data.get("policies") or []
    if not isinstance(policies, list):
        raise ConfigError("gating.policies must be a list")
    return GatingConfig(
        enabled=bool(data.get("enabled", True)),
        admin_chats=_parse_chat_list(data.get("admin_chats"), "gating.admin_chats"),
        public_chats=_parse_chat_list(data.get("public_chats"), "gating.public_chats"),
        policies=[parse_policy(p, i) for i, p in enumerate(policies)],
        allow_public_view_for_cron_proposals=bool(
            data.get("allow_public_view_for_cron_proposals", False)
        ),
        notify_execution_failures=bool(data.get("notify_execution_failures", False)),
    )


def _positive_number(value: Any, where: str, integer: bool = False) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{where} must be a positive number")
    if integer and int(value) != value:
        raise ConfigError(f"{where} must be an integer")
    return int(value) if integer else float(value)


def parse_budgets(data: Any) -> BudgetsConfig:
    data = _require_mapping(data, "budgets")
    _reject_unknown(data, {"max_daily_tokens", "max_single_run_cost_usd"}, "budgets")
    return BudgetsConfig(
        max_daily_tokens=_positive_number(
            data.get("max_daily_tokens"), "budgets.max_daily_tokens", integer=True
        ),
        max_single_run_cost_usd=_positive_number(
            data.get("max_single_run_cost_usd"), "budgets.max_single_run_cost_usd"
        ),
    )


def _parse_asset_limits(data: Dict[str, Any]) -> Dict[str, float]:
    limits: Dict[str, float] = {}
    for asset, value in data.items():
        where = f"trading.kraken.max_order_asset.{asset}"
        if value is None:
            raise ConfigError(f"{where} must be a positive number")
        limits[str(asset)] = float(_positive_number(value, where) or 0)
    return limits


def parse_kraken(data: Any) -> KrakenConfig:
    data = _require_mapping(data, "trading.kraken")
    _reject_unknown(
        data,
        {
            "enabled",
            "api_key",
            "api_secret",
            "allowed_symbols",
            "max_order_usd",
            "max_order_asset",
            "api_url",
            "timeout_sec",
        },
        "trading.kraken",
    )
    max_order_asset = data.get("max_order_asset") or {}
    if not isinstance(max_order_asset, dict):
        raise ConfigError("trading.kraken.max_order_asset must be an object")
    return KrakenConfig(
        enabled=bool(data.get("enabled", False)),
        api_key=data.get("api_key"),
        api_secret=data.get("api_secret"),
        allowed_symbols=list(data.get("allowed_symbols") or []),
        max_order_usd=_positive_number(
            data.get("max_order_usd"), "trading.kraken.max_order_usd"
        ),
        max_order_asset=_parse_asset_limits(max_order_asset),
        api_url=str(data.get("api_url") or "https://api.kraken.com").rstrip("/"),
        timeout_sec=int(data.get("timeout_sec") or 30),
    )


def config_from_dict(data: Mapping[str, Any]) -> OpsGateConfig:
    """Build a validated config from the JSON document shape."""
    data = _require_mapping(dict(data), "config")
    _reject_unknown(data, {"gating", "budgets", "trading"}, "config")
    cfg = OpsGateConfig()
    if data.get("gating") is not None:
        cfg.gating = parse_gating(data["gating"])
    if data.get("budgets") is not None:
        cfg.budgets = parse_budgets(data["budgets"])
    trading = data.get("trading")
    if trading is not None:
        trading = _require_mapping(trading, "trading")
        _reject_unknown(trading, {"kraken"}, "trading")
        if trading.get("kraken") is not None:
            cfg.kraken = parse_kraken(trading["kraken"])
    return cfg


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _env_flag(env: Mapping[str, str], key: str) -> Optional[bool]:
    raw = (env.get(key) or "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    return None


def _env_list(env: Mapping[str, str], key: str) -> Optional[List[str]]:
    raw = env.get(key)
    if raw is None:
        return None
    return [v.strip() for v in raw.split(",") if v.strip()]


def _env_number(env: Mapping[str, str], key: str) -> Optional[float]:
    raw = (env.get(key) or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number") from e
    if value <= 0:
        raise ConfigError(f"{key} must be positive")
    return value


def _apply_env_overrides(cfg: OpsGateConfig, env: Mapping[str, str]) -> None:
    enabled = _env_flag(env, "OPSGATE_GATING_ENABLED")
    admin_chats = _env_list(env, "OPSGATE_GATING_ADMIN_CHATS")
    public_chats = _env_list(env, "OPSGATE_GATING_PUBLIC_CHATS")
    policies_json = env.get("OPSGATE_GATING_POLICIES")

    if any(v is not None for v in (enabled, admin_chats, public_chats, policies_json)):
        if cfg.gating is None:
            cfg.gating = GatingConfig()
        if enabled is not None:
            cfg.gating.enabled = enabled
        if admin_chats is not None:
            cfg.gating.admin_chats = admin_chats
        if public_chats is not None:
            cfg.gating.public_chats = public_chats
        if policies_json:
            try:
                policies = json.loads(policies_json)
            except json.JSONDecodeError as e:
                raise ConfigError(f"OPSGATE_GATING_POLICIES is not valid JSON: {e}") from e
            if not isinstance(policies, list):
                raise ConfigError("OPSGATE_GATING_POLICIES must be a JSON list")
            cfg.gating.policies = [parse_policy(p, i) for i, p in enumerate(policies)]

    max_tokens = _env_number(env, "OPSGATE_BUDGET_MAX_DAILY_TOKENS")
    max_cost = _env_number(env, "OPSGATE_BUDGET_MAX_SINGLE_RUN_COST_USD")
    if max_tokens is not None or max_cost is not None:
        if cfg.budgets is None:
            cfg.budgets = BudgetsConfig()
        if max_tokens is not None:
            cfg.budgets.max_daily_tokens = int(max_tokens)
        if max_cost is not None:
            cfg.budgets.max_single_run_cost_usd = max_cost

    kraken_enabled = _env_flag(env, "OPSGATE_KRAKEN_ENABLED")
    if kraken_enabled is not None:
        cfg.kraken.enabled = kraken_enabled
    if api_key := env.get("OPSGATE_KRAKEN_API_KEY"):
        cfg.kraken.api_key = api_key
    if api_secret := env.get("OPSGATE_KRAKEN_API_SECRET"):
        cfg.kraken.api_secret = api_secret
    symbols = _env_list(env, "OPSGATE_KRAKEN_ALLOWED_SYMBOLS")
    if symbols is not None:
        cfg.kraken.allowed_symbols = symbols
    max_usd = _env_number(env, "OPSGATE_KRAKEN_MAX_ORDER_USD")
    if max_usd is not None:
        cfg.kraken.max_order_usd = max_usd


def load_config(
    path: Optional[str] = None, env: Optional[Mapping[str, str]] = None
) -> OpsGateConfig:
    """
    Load configuration.

    Precedence: explicit `path` > OPSGATE_CONFIG_PATH > <state_dir>/config.json,
    then environment overrides on top. A missing file yields defaults
    (gating not configured, i.e. disabled).

    Raises:
        ConfigError: invalid JSON or schema violations.
    """
    env = os.environ if env is None else env
    path = path or env.get(CONFIG_PATH_ENV) or os.path.join(get_state_dir(env), "config.json")

    data: Dict[str, Any] = {}
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e
        logger.info(f"Loaded config from {path}")
    else:
        logger.debug(f"No config file at {path}; using defaults")

    cfg = config_from_dict(data)
    _apply_env_overrides(cfg, env)
    return cfg
