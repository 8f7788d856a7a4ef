"""
Configuration schema and loader.

INVARIANTS:
    - Invalid values fail fast on load
    - NAVDESK_* environment variables override config.yaml
    - Relative file paths are anchored at the project root
"""

import os
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from navdesk.config import (
    ConfigLoader,
    ConfigSchema,
    MarketDataConfig,
    MonitorConfig,
    PricingConfig,
    load_config,
)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _write_config(tmp_path, text: str = "") -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(exist_ok=True)
    path = config_dir / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in ("NAVDESK_RISK_FREE_RATE", "NAVDESK_SEED", "NAVDESK_TICK_INTERVAL", "NAVDESK_MARKET_TZ",
                 "NAVDESK_LOG_LEVEL", "NAVDESK_CONSOLE_LEVEL", "NAVDESK_LOG_DIR",
                 "NAVDESK_POSITIONS_FILE", "NAVDESK_SECURITIES_FILE"):
        monkeypatch.delenv(name, raising=False)


class TestSchema:

    def test_defaults(self):
        config = ConfigSchema()
        assert config.pricing.risk_free_rate == Decimal("0.02")
        assert config.pricing.days_per_year == 365
        assert config.market_data.default_initial_price == Decimal("100.00")
        assert config.monitor.cycle_sla_ms == 100.0
        assert config.event_bus.max_queue_size == 10_000

    @pytest.mark.parametrize("rate", ["-0.01", "1", "1.5"])
    def test_risk_free_rate_bounds(self, rate):
        with pytest.raises(ValidationError):
            PricingConfig(risk_free_rate=Decimal(rate))

    def test_interval_order(self):
        with pytest.raises(ValidationError, match="update_interval_min_ms"):
            MarketDataConfig(update_interval_min_ms=3000, update_interval_max_ms=1000)

    def test_initial_prices_normalized(self):
        config = MarketDataConfig(initial_prices={" aapl ": Decimal("150")})
        assert config.initial_prices == {"AAPL": Decimal("150")}
        assert config.initial_price_for("aapl") == Decimal("150")
        assert config.initial_price_for("MSFT") == Decimal("100.00")

    def test_initial_prices_must_be_positive(self):
        with pytest.raises(ValidationError):
            MarketDataConfig(initial_prices={"AAPL": Decimal("0")})

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError, match="Unknown timezone"):
            MonitorConfig(market_timezone="Mars/Olympus")

    def test_validate_assignment(self):
        config = PricingConfig()
        with pytest.raises(ValidationError):
            config.price_scale = 1

    def test_yaml_roundtrip(self, tmp_path):
        config = ConfigSchema.from_dict({"pricing": {"risk_free_rate": "0.03"}, "market_data": {"seed": 42}})
        path = tmp_path / "out.yaml"
        config.to_yaml(path)
        loaded = ConfigSchema.from_yaml(path)
        assert loaded.pricing.risk_free_rate == Decimal("0.03")
        assert loaded.market_data.seed == 42


class TestLoader:

    def test_sample_config_loads(self):
        config = load_config(PROJECT_ROOT / "config" / "config.yaml")
        assert config.market_data.initial_prices["TELSA"] == Decimal("800.00")
        assert config.positions_file == PROJECT_ROOT / "config" / "positions.csv"
        assert config.securities_file.exists()

    def test_relative_paths_anchor_at_project_root(self, tmp_path):
        path = _write_config(tmp_path, "positions_file: data/positions.csv\n")
        config = load_config(path)
        assert config.positions_file == tmp_path.resolve() / "data" / "positions.csv"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_uses_defaults(self, tmp_path):
        config = load_config(_write_config(tmp_path))
        assert config.pricing.risk_free_rate == Decimal("0.02")

    def test_non_mapping_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="mapping"):
            load_config(_write_config(tmp_path, "- a\n- b\n"))

    def test_validation_error_wrapped(self, tmp_path):
        with pytest.raises(ValueError, match="Configuration validation failed"):
            load_config(_write_config(tmp_path, "pricing:\n  risk_free_rate: 2\n"))

    def test_environment_overrides(self, tmp_path, monkeypatch):
        path = _write_config(tmp_path, "pricing:\n  risk_free_rate: 0.02\nmonitor:\n  tick_interval_seconds: 1\n")
        monkeypatch.setenv("NAVDESK_RISK_FREE_RATE", "0.05")
        monkeypatch.setenv("NAVDESK_SEED", "7")
        monkeypatch.setenv("NAVDESK_TICK_INTERVAL", " 0.25 ")
        monkeypatch.setenv("NAVDESK_POSITIONS_FILE", "other.csv")

        config = load_config(path)

        assert config.pricing.risk_free_rate == Decimal("0.05")
        assert config.market_data.seed == 7
        assert config.monitor.tick_interval_seconds == 0.25
        assert config.positions_file.name == "other.csv"

    def test_blank_environment_value_ignored(self, tmp_path, monkeypatch):
        path = _write_config(tmp_path, "pricing:\n  risk_free_rate: 0.03\n")
        monkeypatch.setenv("NAVDESK_RISK_FREE_RATE", "  ")
        assert load_config(path).pricing.risk_free_rate == Decimal("0.03")

    def test_env_local_file_loaded(self, tmp_path):
        path = _write_config(tmp_path)
        (path.parent / ".env.local").write_text("NAVDESK_SEED=99\n", encoding="utf-8")

        try:
            loader = ConfigLoader.for_file(path)
            assert loader.load()["market_data"]["seed"] == "99"
        finally:
            os.environ.pop("NAVDESK_SEED", None)
