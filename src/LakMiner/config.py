import os
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from .clients.ledger_client import GasParams
from .core.scheduler import default_worker_count
from .db import get_section, set_values

DEFAULT_RPC_URL = "https://monad-testnet.drpc.org"
DEFAULT_CONTRACT_ADDRESS = "0x569d430a45F5F71F9f04A882c45eA71274BBa24c"
PRIVATE_KEY_ENV = "LAK_PRIVATE_KEY"

GWEI = Decimal(10) ** 9

# Secrets are read from the environment only and never written to the store
SECRET_KEYS = {("wallet", "private_key")}


class ConfigError(ValueError):
    pass


def _bool_from_str(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def load_config() -> Dict[str, Any]:
    """
    Load configuration from the settings database.
    Falls back to environment variables and defaults.
    """
    rpc = get_section("rpc")
    gas = get_section("gas")
    miner = get_section("miner")
    log = get_section("logging")
    web = get_section("web")

    cfg: Dict[str, Any] = {}
    cfg["rpc"] = {
        "url": rpc.get("url") or os.environ.get("LAK_RPC_URL", DEFAULT_RPC_URL),
        "contract_address": rpc.get("contract_address") or os.environ.get("LAK_CONTRACT_ADDRESS", DEFAULT_CONTRACT_ADDRESS),
        "request_timeout_secs": rpc.get("request_timeout_secs") or os.environ.get("REQUEST_TIMEOUT", "15"),
        "confirmation_timeout_secs": rpc.get("confirmation_timeout_secs") or "120",
        "poll_interval_secs": rpc.get("poll_interval_secs") or "1.0",
    }
    cfg["wallet"] = {"private_key": os.environ.get(PRIVATE_KEY_ENV, "")}
    cfg["gas"] = {
        "limit": gas.get("limit") or os.environ.get("LAK_GAS_LIMIT", "150000"),
        "max_priority_fee_gwei": gas.get("max_priority_fee_gwei") or os.environ.get("LAK_MAX_PRIORITY_FEE_GWEI", "0.01"),
        "max_fee_gwei": gas.get("max_fee_gwei") or os.environ.get("LAK_MAX_FEE_GWEI", "103"),
    }
    cfg["miner"] = {
        "num_workers": miner.get("num_workers") or os.environ.get("LAK_NUM_WORKERS", "0"),
        "batch_size": miner.get("batch_size") or os.environ.get("LAK_BATCH_SIZE", "100000"),
        "max_mining_time_secs": miner.get("max_mining_time_secs") or os.environ.get("LAK_MAX_MINING_TIME", "5"),
        "round_pause_secs": miner.get("round_pause_secs") or "0.1",
        "loop_delay_secs": miner.get("loop_delay_secs") or "1.0",
        "max_retries": miner.get("max_retries") or "3",
        "retry_delay_secs": miner.get("retry_delay_secs") or "0.5",
        "reward_per_mine": miner.get("reward_per_mine") or "1",
        "verify_hash_on_start": _bool_from_str(miner.get("verify_hash_on_start"), True),
    }
    cfg["logging"] = {
        "file": log.get("file") or os.environ.get("LOG_FILE", ""),
        "level": log.get("level") or os.environ.get("LOG_LEVEL", "INFO"),
    }
    cfg["web"] = {
        "enabled": _bool_from_str(web.get("enabled", os.environ.get("WEB_ENABLED")), True),
        "host": web.get("host") or os.environ.get("WEB_HOST", "0.0.0.0"),
        "port": web.get("port") or os.environ.get("WEB_PORT", "5000"),
    }
    return _validate_config(cfg)


def _coerce(section: dict, key: str, cast, default, minimum=None) -> None:
    try:
        value = cast(section.get(key, default))
    except (TypeError, ValueError):
        value = default
    if minimum is not None and value < minimum:
        value = default
    section[key] = value


def _validate_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Ensure required sections and types exist; apply sane defaults."""
    rpc = cfg.setdefault("rpc", {})
    rpc.setdefault("url", DEFAULT_RPC_URL)
    rpc.setdefault("contract_address", DEFAULT_CONTRACT_ADDRESS)
    _coerce(rpc, "request_timeout_secs", int, 15, minimum=1)
    _coerce(rpc, "confirmation_timeout_secs", float, 120.0, minimum=1)
    _coerce(rpc, "poll_interval_secs", float, 1.0, minimum=0)

    cfg.setdefault("wallet", {}).setdefault("private_key", "")

    gas = cfg.setdefault("gas", {})
    _coerce(gas, "limit", int, 150000, minimum=21000)
    gas["max_priority_fee_gwei"] = str(gas.get("max_priority_fee_gwei", "0.01"))
    gas["max_fee_gwei"] = str(gas.get("max_fee_gwei", "103"))

    miner = cfg.setdefault("miner", {})
    _coerce(miner, "num_workers", int, 0, minimum=0)
    _coerce(miner, "batch_size", int, 100000, minimum=1)
    _coerce(miner, "max_mining_time_secs", float, 5.0, minimum=0)
    _coerce(miner, "round_pause_secs", float, 0.1, minimum=0)
    _coerce(miner, "loop_delay_secs", float, 1.0, minimum=0)
    _coerce(miner, "max_retries", int, 3, minimum=1)
    _coerce(miner, "retry_delay_secs", float, 0.5, minimum=0)
    _coerce(miner, "reward_per_mine", int, 1, minimum=0)
    miner["verify_hash_on_start"] = _bool_from_str(miner.get("verify_hash_on_start"), True)

    log = cfg.setdefault("logging", {})
    log.setdefault("file", "")
    log["level"] = str(log.get("level") or "INFO").upper()

    web = cfg.setdefault("web", {})
    web["enabled"] = _bool_from_str(web.get("enabled"), True)
    web.setdefault("host", "0.0.0.0")
    _coerce(web, "port", int, 5000, minimum=1)

    return cfg


def check_credentials(cfg: Dict[str, Any]) -> None:
    """Raise ConfigError when the signing key or contract address is missing or a placeholder."""
    key = (cfg.get("wallet", {}).get("private_key") or "").strip()
    if not key or key.upper().startswith("YOUR_"):
        raise ConfigError(f"Set your private key in the {PRIVATE_KEY_ENV} environment variable")
    contract = (cfg.get("rpc", {}).get("contract_address") or "").strip()
    if not contract or contract.upper().startswith("YOUR_"):
        raise ConfigError("Set the mining contract address (--contract or LAK_CONTRACT_ADDRESS)")


def gwei_to_wei(value) -> int:
    try:
        amount = Decimal(str(value)) * GWEI
    except InvalidOperation:
        raise ConfigError(f"Invalid gwei amount: {value!r}")
    if amount < 0:
        raise ConfigError(f"Gas fee must not be negative: {value!r}")
    return int(amount)


def gas_params_from_config(cfg: Dict[str, Any]) -> GasParams:
    gas = cfg.get("gas", {})
    return GasParams(
        gas_limit=int(gas.get("limit", 150000)),
        max_priority_fee_wei=gwei_to_wei(gas.get("max_priority_fee_gwei", "0.01")),
        max_fee_wei=gwei_to_wei(gas.get("max_fee_gwei", "103")),
    )


def resolve_worker_count(configured) -> int:
    """0 or unset means one worker per logical CPU, never fewer than 2."""
    try:
        configured = int(configured or 0)
    except (TypeError, ValueError):
        configured = 0
    return configured if configured > 0 else default_worker_count()


def save_config(cfg: Dict[str, Any]) -> None:
    """Persist configuration to the settings database, skipping secrets."""
    for section in ("rpc", "gas", "miner", "logging", "web"):
        values = {
            key: value
            for key, value in cfg.get(section, {}).items()
            if (section, key) not in SECRET_KEYS
        }
        if values:
            set_values(section, values)
