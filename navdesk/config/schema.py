"""
Configuration schema using Pydantic for validation.

Single source of truth for all configuration parameters.
Validates on load, fails fast on invalid config.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from typing import Dict, Optional, Any
from decimal import Decimal
from pathlib import Path
from enum import Enum

import pytz


# ============================================================================
# ENUMS
# ============================================================================

class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================================
# PRICING CONFIGURATION
# ============================================================================

class PricingConfig(BaseModel):
    """
    Option pricing parameters.

    RULES:
    - Risk-free rate is an annual rate in [0, 1)
    - Price scale is the number of decimal places kept for option prices
    """

    risk_free_rate: Decimal = Field(
        ge=Decimal("0"),
        lt=Decimal("1"),
        default=Decimal("0.02"),
        description="Annual risk-free rate used by Black-Scholes"
    )

    days_per_year: int = Field(
        ge=360,
        le=366,
        default=365,
        description="Day-count basis for time to maturity"
    )

    price_scale: int = Field(
        ge=2,
        le=16,
        default=10,
        description="Decimal places kept for computed option prices"
    )

    model_config = ConfigDict(validate_assignment=True)


# ============================================================================
# MARKET DATA CONFIGURATION
# ============================================================================

class MarketDataConfig(BaseModel):
    """Simulated market data feed settings."""

    update_interval_min_ms: int = Field(
        ge=1,
        le=60_000,
        default=500,
        description="Shortest simulated time step between ticks"
    )

    update_interval_max_ms: int = Field(
        ge=1,
        le=60_000,
        default=2000,
        description="Longest simulated time step between ticks"
    )

    default_initial_price: Decimal = Field(
        gt=Decimal("0"),
        default=Decimal("100.00"),
        description="Starting price for stocks without an explicit one"
    )

    initial_prices: Dict[str, Decimal] = Field(
        default_factory=dict,
        description="Starting price per stock symbol"
    )

    price_scale: int = Field(
        ge=2,
        le=10,
        default=4,
        description="Decimal places kept for simulated prices"
    )

    seed: Optional[int] = Field(
        default=None,
        description="Seed for reproducible price paths (None = random)"
    )

    @field_validator("initial_prices")
    @classmethod
    def validate_initial_prices(cls, v: Dict[str, Decimal]) -> Dict[str, Decimal]:
        """Uppercase symbols and require positive prices."""
        validated = {}
        for symbol, price in v.items():
            symbol = symbol.strip().upper()
            if not symbol:
                raise ValueError("Empty symbol not allowed")
            if price <= 0:
                raise ValueError(f"Initial price for {symbol} must be positive")
            validated[symbol] = price
        return validated

    @model_validator(mode="after")
    def validate_interval(self):
        """Ensure min <= max."""
        if self.update_interval_min_ms > self.update_interval_max_ms:
            raise ValueError(
                f"update_interval_min_ms ({self.update_interval_min_ms}) must be "
                f"<= update_interval_max_ms ({self.update_interval_max_ms})"
            )
        return self

    def initial_price_for(self, symbol: str) -> Decimal:
        return self.initial_prices.get(symbol.upper(), self.default_initial_price)


# ============================================================================
# EVENT BUS CONFIGURATION
# ============================================================================

class EventBusConfig(BaseModel):
    """Event bus settings."""

    max_queue_size: int = Field(
        ge=1,
        le=1_000_000,
        default=10_000,
        description="Maximum queued events before new ones are dropped"
    )

    listener_queue_size: Optional[int] = Field(
        ge=1,
        le=1_000_000,
        default=None,
        description="Maximum events waiting for one listener (default: max_queue_size)"
    )

    failure_history_size: int = Field(
        ge=0,
        le=10_000,
        default=100,
        description="Number of listener failures kept for inspection"
    )

    stop_timeout_seconds: float = Field(
        gt=0,
        le=60,
        default=5.0,
        description="Max seconds to wait for the queue to drain on stop"
    )


# ============================================================================
# MONITOR CONFIGURATION
# ============================================================================

class MonitorConfig(BaseModel):
    """Real-time monitoring loop settings."""

    tick_interval_seconds: float = Field(
        gt=0,
        le=60,
        default=1.0,
        description="Seconds between market data polls"
    )

    market_timezone: str = Field(
        default="America/New_York",
        description="Timezone used for the valuation date"
    )

    show_initial_summary: bool = Field(
        default=True,
        description="Render the portfolio summary once after loading"
    )

    cycle_sla_ms: float = Field(
        gt=0,
        default=100.0,
        description="Update cycles slower than this are logged as warnings"
    )

    @field_validator("market_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class LoggingConfig(BaseModel):
    """Logging configuration."""

    log_dir: Path = Field(
        default=Path("logs"),
        description="Base log directory"
    )

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="File logging level"
    )

    console_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Console logging level"
    )

    json_logs: bool = Field(
        default=True,
        description="Use JSON formatting"
    )

    max_bytes: int = Field(
        ge=1_000_000,
        le=100_000_000,
        default=10_000_000,
        description="Max bytes per log file"
    )

    backup_count: int = Field(
        ge=1,
        le=20,
        default=5,
        description="Number of backup files"
    )


# ============================================================================
# MASTER CONFIGURATION
# ============================================================================

class ConfigSchema(BaseModel):
    """
    Master configuration schema.

    Single source of truth for all parameters.
    Validates on load, fails fast on invalid config.
    """

    pricing: PricingConfig = Field(default_factory=PricingConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    event_bus: EventBusConfig = Field(default_factory=EventBusConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Paths
    positions_file: Path = Field(
        default=Path("config/positions.csv")
    )

    securities_file: Path = Field(
        default=Path("config/securities.yaml")
    )

    model_config = ConfigDict(validate_assignment=True)

    def resolve_paths(self, base_dir: Path) -> "ConfigSchema":
        """Return a copy with relative file paths anchored at base_dir."""
        updates = {}
        for attr in ("positions_file", "securities_file"):
            path = getattr(self, attr)
            if not path.is_absolute():
                updates[attr] = base_dir / path
        return self.model_copy(update=updates)

    @classmethod
    def from_yaml(cls, path: Path) -> "ConfigSchema":
        """Load config from YAML file."""
        import yaml
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigSchema":
        """Load config from dictionary."""
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save config to YAML file."""
        import yaml
        data = self.model_dump(mode="json")
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
