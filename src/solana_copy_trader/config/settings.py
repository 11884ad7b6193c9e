"""Configuration management for the copy-trading bot."""

from __future__ import annotations

import json
import os
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional, Set, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
MODE_ENV_VAR = "BOT_MODE"


class AppMode(str, Enum):
    """Supported runtime modes."""

    DRY_RUN = "dry_run"
    LIVE = "live"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested_mode = os.getenv(MODE_ENV_VAR)
    if not requested_mode:
        mode_section = base_section.get("mode")
        if isinstance(mode_section, dict):
            requested_mode = cast(str, mode_section.get("active", AppMode.DRY_RUN.value))
        elif isinstance(mode_section, str):
            requested_mode = mode_section
    requested_mode = (requested_mode or AppMode.DRY_RUN.value).lower()

    if requested_mode in data and requested_mode != "default":
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested_mode]))
    if base_section:
        return base_section
    return data


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    merged = dict(_select_profile(payload))
    mode_section = merged.get("mode")
    if isinstance(mode_section, dict):
        mode_section = dict(mode_section)
        mode_section.setdefault("config_file", str(path))
        merged["mode"] = mode_section
    else:
        merged["mode"] = {"config_file": str(path)}
    return merged, path


class ModeConfig(BaseModel):
    """Runtime mode toggles."""

    active: AppMode = Field(default=AppMode.DRY_RUN)
    config_file: Optional[Path] = None


class RPCConfig(BaseModel):
    """RPC configuration for Solana endpoints."""

    primary_url: AnyHttpUrl = Field(default="https://api.mainnet-beta.solana.com")
    fallback_urls: List[AnyHttpUrl] = Field(default_factory=list)
    request_timeout: float = Field(default=12.0, ge=1.0, le=60.0)
    commitment: str = Field(default="confirmed")

    @field_validator("fallback_urls", mode="before")
    @classmethod
    def _unique_urls(cls, value: Any) -> List[Any]:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        seen: set[str] = set()
        unique: List[Any] = []
        for url in value:
            if str(url) not in seen:
                unique.append(url)
                seen.add(str(url))
        return unique

    @field_validator("commitment")
    @classmethod
    def _known_commitment(cls, value: str) -> str:
        normalised = value.strip().lower()
        if normalised not in {"processed", "confirmed", "finalized"}:
            raise ValueError(f"Unsupported commitment level: {value}")
        return normalised


class WalletConfig(BaseModel):
    """Tracked wallet and operator signer configuration."""

    tracked_wallet_address: Optional[str] = None
    operator_wallet_address: Optional[str] = None
    private_key: Optional[str] = None
    keypair_path: Optional[Path] = None


class SafetyConfig(BaseModel):
    """Rate limits and risk filters applied before every mirrored buy."""

    cooldown_seconds: float = Field(default=30.0, ge=0.0)
    max_trades_per_hour: int = Field(default=10, ge=0)
    max_daily_trade_value: float = Field(default=2.0, ge=0.0)
    # Comma list or JSON array; env values skip pydantic-settings JSON decoding.
    blacklisted_tokens: Annotated[Set[str], NoDecode] = Field(default_factory=set)
    min_liquidity_usd: float = Field(default=10_000.0, ge=0.0)
    max_price_impact: float = Field(default=0.05, ge=0.0, le=1.0)

    @field_validator("blacklisted_tokens", mode="before")
    @classmethod
    def _split_blacklist(cls, value: Any) -> Any:
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                return set(json.loads(text))
            return {item.strip() for item in text.split(",") if item.strip()}
        return value


class TradingConfig(BaseModel):
    """Sizing parameters for mirrored trades."""

    max_sol_per_trade: float = Field(default=0.05, gt=0.0)
    min_sol_balance: float = Field(default=0.01, ge=0.0)
    dedupe_ttl_seconds: int = Field(default=600, ge=0)


class ExecutionConfig(BaseModel):
    """Transaction submission and confirmation behaviour."""

    max_submission_retries: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0)
    max_backoff_seconds: float = Field(default=4.0, ge=0.0)
    confirmation_poll_seconds: float = Field(default=1.0, ge=0.0)
    confirmation_timeout_seconds: float = Field(default=90.0, gt=0.0)
    blockhash_max_age_seconds: float = Field(default=45.0, gt=0.0)
    slippage_bps: int = Field(default=500, ge=1, le=10_000)
    skip_preflight: bool = False
    # 0.5 accepts a quote up to 50% worse than the tracked wallet's fill; 0 disables.
    price_guard_factor: float = Field(default=0.5, ge=0.0, le=1.0)
    priority_fee_lamports: int = Field(default=1_900_000, ge=0)
    priority_level: str = Field(default="veryHigh")

    @field_validator("priority_level")
    @classmethod
    def _known_priority_level(cls, value: str) -> str:
        if value not in {"medium", "high", "veryHigh"}:
            raise ValueError(f"Unsupported priority level: {value}")
        return value


class MarketDataConfig(BaseModel):
    """External quote and liquidity sources."""

    jupiter_quote_url: AnyHttpUrl = Field(default="https://quote-api.jup.ag/v6/quote")
    jupiter_swap_instructions_url: AnyHttpUrl = Field(
        default="https://quote-api.jup.ag/v6/swap-instructions"
    )
    dexscreener_url: AnyHttpUrl = Field(default="https://api.dexscreener.com/latest/dex/tokens")
    http_timeout: float = Field(default=8.0, ge=1.0, le=45.0)
    cache_ttl_seconds: int = Field(default=60, ge=0)


class ServerConfig(BaseModel):
    """Webhook listener settings."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    webhook_path: str = Field(default="/webhook")

    @field_validator("webhook_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"


def _normalise_log_level(value: str) -> str:
    normalised = value.strip().upper()
    if normalised not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ValueError(f"Unsupported log level: {value}")
    return normalised


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")
    json_logs: bool = True
    logger_levels: Dict[str, str] = Field(
        default_factory=lambda: {"httpx": "WARNING", "httpcore": "WARNING", "urllib3": "WARNING"}
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        return _normalise_log_level(value)

    @field_validator("logger_levels")
    @classmethod
    def _known_logger_levels(cls, value: Dict[str, str]) -> Dict[str, str]:
        return {name: _normalise_log_level(level) for name, level in value.items()}


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    mode: ModeConfig = Field(default_factory=ModeConfig)
    rpc: RPCConfig = Field(default_factory=RPCConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, _ = _load_toml_config()
            return payload

        # Runtime environment wins over the static config file.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _sync_rpc_defaults(self) -> "AppConfig":
        helius_url = os.getenv("HELIUS_RPC_URL")
        if not helius_url:
            helius_key = os.getenv("HELIUS_API_KEY")
            if helius_key:
                helius_url = f"https://mainnet.helius-rpc.com/?api-key={helius_key.strip()}"
        if helius_url:
            previous_primary = str(self.rpc.primary_url)
            self.rpc.primary_url = helius_url
            fallbacks = [str(url) for url in self.rpc.fallback_urls]
            if previous_primary not in fallbacks:
                fallbacks.insert(0, previous_primary)
            self.rpc.fallback_urls = list(dict.fromkeys(fallbacks))
        return self

    @property
    def dry_run(self) -> bool:
        return self.mode.active == AppMode.DRY_RUN


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "AppMode",
    "ExecutionConfig",
    "MarketDataConfig",
    "ModeConfig",
    "MonitoringConfig",
    "RPCConfig",
    "SafetyConfig",
    "ServerConfig",
    "TradingConfig",
    "WalletConfig",
    "get_app_config",
]
