"""
Configuration system with Pydantic validation.

Single source of truth for all configuration parameters.
"""

from .schema import (
    ConfigSchema,
    PricingConfig,
    MarketDataConfig,
    EventBusConfig,
    MonitorConfig,
    LoggingConfig,
    LogLevel,
)

from .loader import (
    ConfigLoader,
    load_config,
)

__all__ = [
    "ConfigSchema",
    "PricingConfig",
    "MarketDataConfig",
    "EventBusConfig",
    "MonitorConfig",
    "LoggingConfig",
    "LogLevel",
    "ConfigLoader",
    "load_config",
]
