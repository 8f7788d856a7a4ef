"""
Security catalog - symbol to SecurityDefinition lookup.

resolve() never raises: unknown or empty symbols return None and the
caller decides what to do (the portfolio skips the position and reports
it). Use require() where a missing definition really is an error.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

import yaml

from navdesk.errors import CatalogLoadError, UnresolvedSecurityError
from navdesk.logging import get_logger, LogStream
from navdesk.market.security import (
    DEFAULT_MU,
    DEFAULT_SIGMA,
    SecurityDefinition,
    SecurityKind,
    normalize_symbol,
)

logger = get_logger(LogStream.MARKET_DATA)


class SecurityCatalog:
    """
    In-memory catalog of security definitions.

    Usage:
        catalog = SecurityCatalog.from_yaml(Path("config/securities.yaml"))

        security = catalog.resolve("aapl")
        if security is None:
            ...  # unknown symbol

    THREAD SAFETY:
    - register() swaps in a new dict under a lock
    - resolve() reads the current dict without locking
    """

    def __init__(self, securities: Iterable[SecurityDefinition] = ()):
        self._lock = Lock()
        self._securities: Dict[str, SecurityDefinition] = {}
        for security in securities:
            self._securities[security.symbol] = security

        logger.info("SecurityCatalog initialized", extra={"securities": len(self._securities)})

    def register(self, security: SecurityDefinition) -> None:
        """Add or replace a definition."""
        with self._lock:
            updated = dict(self._securities)
            replaced = security.symbol in updated
            updated[security.symbol] = security
            self._securities = updated

        logger.debug(
            f"{'Replaced' if replaced else 'Registered'} security {security.symbol}",
            extra={"symbol": security.symbol, "type": security.kind.value}
        )

    def resolve(self, symbol: Optional[str]) -> Optional[SecurityDefinition]:
        """
        Look up a symbol.

        Returns:
            SecurityDefinition, or None when the symbol is unknown or empty
        """
        key = normalize_symbol(symbol)
        if not key:
            return None
        return self._securities.get(key)

    def require(self, symbol: str) -> SecurityDefinition:
        """
        Look up a symbol that must exist.

        Raises:
            UnresolvedSecurityError: If the symbol is unknown
        """
        security = self.resolve(symbol)
        if security is None:
            raise UnresolvedSecurityError(normalize_symbol(symbol) or str(symbol))
        return security

    def contains(self, symbol: Optional[str]) -> bool:
        return self.resolve(symbol) is not None

    __contains__ = contains

    def find_by_kind(self, kind: SecurityKind) -> List[SecurityDefinition]:
        return [s for s in self._securities.values() if s.kind == kind]

    def stocks(self) -> List[SecurityDefinition]:
        return self.find_by_kind(SecurityKind.STOCK)

    @property
    def symbols(self) -> List[str]:
        return list(self._securities.keys())

    def __len__(self) -> int:
        return len(self._securities)

    def get_stats(self) -> dict:
        """Get catalog statistics"""
        securities = list(self._securities.values())
        return {
            'securities': len(securities),
            'stocks': sum(1 for s in securities if s.kind == SecurityKind.STOCK),
            'calls': sum(1 for s in securities if s.kind == SecurityKind.CALL),
            'puts': sum(1 for s in securities if s.kind == SecurityKind.PUT),
        }

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: Path) -> "SecurityCatalog":
        """
        Build a catalog from a YAML file.

        Expected layout:
            securities:
              - symbol: AAPL
                type: STOCK
                mu: 0.08
                sigma: 0.25
              - symbol: AAPL-JAN-2026-150-C
                type: CALL
                strike: 150.00
                maturity: 2026-01-17

        Raises:
            CatalogLoadError: If the file is missing or an entry is malformed
        """
        path = Path(path)
        if not path.exists():
            raise CatalogLoadError(f"Security catalog not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise CatalogLoadError(f"Invalid YAML in {path}: {e}") from e

        entries = data.get("securities") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise CatalogLoadError(f"{path}: expected a 'securities' list")

        securities = []
        seen = set()
        for index, entry in enumerate(entries, start=1):
            security = cls._parse_entry(entry, f"{path} entry {index}")
            if security.symbol in seen:
                raise CatalogLoadError(f"{path} entry {index}: duplicate symbol {security.symbol}")
            seen.add(security.symbol)
            securities.append(security)

        logger.info(f"Loaded {len(securities)} securities from {path}")
        return cls(securities)

    @staticmethod
    def _parse_entry(entry: Any, where: str) -> SecurityDefinition:
        if not isinstance(entry, dict):
            raise CatalogLoadError(f"{where}: expected a mapping")

        try:
            kind = SecurityKind(str(entry.get("type", "STOCK")).strip().upper())
        except ValueError as e:
            raise CatalogLoadError(f"{where}: unknown security type {entry.get('type')!r}") from e

        try:
            mu = _optional_decimal(entry.get("mu"))
            sigma = _optional_decimal(entry.get("sigma"))
            return SecurityDefinition(
                symbol=entry.get("symbol"),
                kind=kind,
                strike=_optional_decimal(entry.get("strike")),
                maturity=_optional_date(entry.get("maturity")),
                underlying=entry.get("underlying") or "",
                mu=DEFAULT_MU if mu is None else mu,
                sigma=DEFAULT_SIGMA if sigma is None else sigma,
            )
        except (ValueError, InvalidOperation) as e:
            raise CatalogLoadError(f"{where}: {e}") from e


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _optional_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())
