"""
Dark Pool TOML Configuration Loader

Loads all sections of config.toml at startup with environment variable overrides.

Environment variable mapping:
    [engine] epoch_interval        → DARKPOOL_EPOCH_INTERVAL
    [engine] commitment_window     → DARKPOOL_COMMITMENT_WINDOW
    [engine] reveal_window         → DARKPOOL_REVEAL_WINDOW
    [intake] max_pending_reveals   → DARKPOOL_MAX_PENDING_REVEALS
    [channels] emergency_withdrawal_delay → DARKPOOL_EMERGENCY_WITHDRAWAL_DELAY
    [api] host / port              → DARKPOOL_NODE_HOST / DARKPOOL_NODE_PORT
    [logging] level                → DARKPOOL_LOG_LEVEL

The engine's private key MUST come from DARKPOOL_ENGINE_PRIVATE_KEY, never TOML.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..constants import (
    COMMITMENT_WINDOW,
    EMERGENCY_WITHDRAWAL_DELAY,
    EPOCH_INTERVAL,
    MAX_CHANNEL_BALANCE,
    MAX_CLOCK_SKEW,
    MAX_ORDER_SIZE,
    MAX_PENDING_REVEALS,
    MAX_UPDATE_AGE,
    MIN_CHANNEL_BALANCE,
    MIN_COMMITMENT_WINDOW,
    MIN_ORDER_SIZE,
    MIN_REVEAL_WINDOW,
    RECENT_MATCHES_KEPT,
    REVEAL_WINDOW,
)
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigurationError(f"{name} is not a number: {value!r}") from e


# ---------------------------------------------------------------------------
# Section dataclasses, one per [section] of config.example.toml
# ---------------------------------------------------------------------------


@dataclass
class EngineSectionConfig:
    """[engine] section."""
    epoch_interval: float = EPOCH_INTERVAL
    commitment_window: int = COMMITMENT_WINDOW
    reveal_window: int = REVEAL_WINDOW
    max_clock_skew: int = MAX_CLOCK_SKEW
    recent_matches_kept: int = RECENT_MATCHES_KEPT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSectionConfig":
        return cls(
            epoch_interval=float(data.get("epoch_interval", EPOCH_INTERVAL)),
            commitment_window=int(data.get("commitment_window", COMMITMENT_WINDOW)),
            reveal_window=int(data.get("reveal_window", REVEAL_WINDOW)),
            max_clock_skew=int(data.get("max_clock_skew", MAX_CLOCK_SKEW)),
            recent_matches_kept=int(data.get("recent_matches_kept", RECENT_MATCHES_KEPT)),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("DARKPOOL_EPOCH_INTERVAL"):
            self.epoch_interval = float(v)
        if v := os.environ.get("DARKPOOL_COMMITMENT_WINDOW"):
            self.commitment_window = int(v)
        if v := os.environ.get("DARKPOOL_REVEAL_WINDOW"):
            self.reveal_window = int(v)


@dataclass
class IntakeConfig:
    """[intake] section."""
    min_order_size: Decimal = MIN_ORDER_SIZE
    max_order_size: Decimal = MAX_ORDER_SIZE
    max_pending_reveals: int = MAX_PENDING_REVEALS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntakeConfig":
        return cls(
            min_order_size=_decimal(data.get("min_order_size", MIN_ORDER_SIZE), "min_order_size"),
            max_order_size=_decimal(data.get("max_order_size", MAX_ORDER_SIZE), "max_order_size"),
            max_pending_reveals=int(data.get("max_pending_reveals", MAX_PENDING_REVEALS)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("DARKPOOL_MAX_PENDING_REVEALS"):
            self.max_pending_reveals = int(v)


@dataclass
class ChannelsConfig:
    """[channels] section."""
    min_balance: Decimal = MIN_CHANNEL_BALANCE
    max_balance: Decimal = MAX_CHANNEL_BALANCE
    emergency_withdrawal_delay: int = EMERGENCY_WITHDRAWAL_DELAY
    max_update_age: int = MAX_UPDATE_AGE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelsConfig":
        return cls(
            min_balance=_decimal(data.get("min_balance", MIN_CHANNEL_BALANCE), "min_balance"),
            max_balance=_decimal(data.get("max_balance", MAX_CHANNEL_BALANCE), "max_balance"),
            emergency_withdrawal_delay=int(data.get("emergency_withdrawal_delay", EMERGENCY_WITHDRAWAL_DELAY)),
            max_update_age=int(data.get("max_update_age", MAX_UPDATE_AGE)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("DARKPOOL_EMERGENCY_WITHDRAWAL_DELAY"):
            self.emergency_withdrawal_delay = int(v)


@dataclass
class ApiConfig:
    """[api] section."""
    host: str = "127.0.0.1"
    port: int = 3001
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApiConfig":
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=int(data.get("port", 3001)),
            cors_origins=list(data.get("cors_origins", ["*"])),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("DARKPOOL_NODE_HOST"):
            self.host = v
        if v := os.environ.get("DARKPOOL_NODE_PORT"):
            self.port = int(v)


@dataclass
class LoggingConfig:
    """[logging] section."""
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(
            level=str(data.get("level", "INFO")).upper(),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("DARKPOOL_LOG_LEVEL"):
            self.level = v.upper()


# -----------------------------------------------------------------------
# Top-level config
# -----------------------------------------------------------------------

@dataclass
class DarkPoolConfig:
    """
    Unified dark pool configuration.

    Loads every section of config.toml and applies environment variable
    overrides.  This is the single source of truth at runtime.
    """
    engine: EngineSectionConfig = field(default_factory=EngineSectionConfig)
    intake: IntakeConfig = field(default_factory=IntakeConfig)
    channels: ChannelsConfig = field(default_factory=ChannelsConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DarkPoolConfig":
        """Create DarkPoolConfig from a parsed TOML dict."""
        return cls(
            engine=EngineSectionConfig.from_dict(data.get("engine", {})),
            intake=IntakeConfig.from_dict(data.get("intake", {})),
            channels=ChannelsConfig.from_dict(data.get("channels", {})),
            api=ApiConfig.from_dict(data.get("api", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "DarkPoolConfig":
        """
        Load configuration from a TOML file.

        A missing file yields defaults with environment overrides applied.
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        try:
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.engine.apply_env()
        self.intake.apply_env()
        self.channels.apply_env()
        self.api.apply_env()
        self.logging.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        e = self.engine
        if e.epoch_interval <= 0:
            raise ConfigurationError("epoch_interval must be > 0")
        if e.commitment_window < MIN_COMMITMENT_WINDOW:
            raise ConfigurationError(f"commitment_window must be >= {MIN_COMMITMENT_WINDOW}")
        if e.reveal_window < MIN_REVEAL_WINDOW:
            raise ConfigurationError(f"reveal_window must be >= {MIN_REVEAL_WINDOW}")
        if e.commitment_window > e.reveal_window:
            raise ConfigurationError("commitment_window cannot exceed reveal_window")
        if e.max_clock_skew < 0:
            raise ConfigurationError("max_clock_skew must be >= 0")

        i = self.intake
        if i.min_order_size <= 0:
            raise ConfigurationError("min_order_size must be > 0")
        if i.max_order_size < i.min_order_size:
            raise ConfigurationError("max_order_size must be >= min_order_size")
        if i.max_pending_reveals < 1:
            raise ConfigurationError("max_pending_reveals must be >= 1")

        c = self.channels
        if c.min_balance <= 0 or c.max_balance < c.min_balance:
            raise ConfigurationError("channel balance bounds are invalid")
        if c.emergency_withdrawal_delay < 0:
            raise ConfigurationError("emergency_withdrawal_delay must be >= 0")
        if c.max_update_age <= 0:
            raise ConfigurationError("max_update_age must be > 0")

        if not (0 < self.api.port < 65536):
            raise ConfigurationError(f"Invalid api port: {self.api.port}")
        if self.logging.level not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.logging.level}")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "engine": {
                "epoch_interval": self.engine.epoch_interval,
                "commitment_window": self.engine.commitment_window,
                "reveal_window": self.engine.reveal_window,
                "max_clock_skew": self.engine.max_clock_skew,
                "recent_matches_kept": self.engine.recent_matches_kept,
            },
            "intake": {
                "min_order_size": str(self.intake.min_order_size),
                "max_order_size": str(self.intake.max_order_size),
                "max_pending_reveals": self.intake.max_pending_reveals,
            },
            "channels": {
                "min_balance": str(self.channels.min_balance),
                "max_balance": str(self.channels.max_balance),
                "emergency_withdrawal_delay": self.channels.emergency_withdrawal_delay,
                "max_update_age": self.channels.max_update_age,
            },
            "api": {
                "host": self.api.host,
                "port": self.api.port,
                "cors_origins": list(self.api.cors_origins),
            },
            "logging": {
                "level": self.logging.level,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> DarkPoolConfig:
    """
    Load dark pool configuration.

    Resolution order:
        1. Explicit *path* argument
        2. DARKPOOL_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("DARKPOOL_CONFIG", "config.toml")

    return DarkPoolConfig.from_file(path)
