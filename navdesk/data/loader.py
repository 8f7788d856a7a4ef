"""
Position file loader.

CSV with a header row. Required columns: Symbol, Size. Optional columns
Type, Strike, Maturity describe option contracts inline; those rows also
produce a SecurityDefinition for the catalog.

    Symbol,Size,Type,Strike,Maturity
    AAPL,1000,,,
    AAPL-JAN-2026-150-C,-20000,CALL,150,2026-01-17

Column names are case-insensitive. Blank lines are ignored. Any malformed
row fails the whole load with PositionLoadError naming the file line.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from navdesk.errors import PositionLoadError
from navdesk.logging import get_logger, LogStream
from navdesk.market.security import SecurityDefinition, SecurityKind, normalize_symbol
from navdesk.portfolio.position import Position

logger = get_logger(LogStream.PORTFOLIO)

REQUIRED_COLUMNS = ("symbol", "size")
OPTIONAL_COLUMNS = ("type", "strike", "maturity")


@dataclass
class LoadedPositions:
    """Result of reading a position file."""
    positions: List[Position] = field(default_factory=list)
    securities: List[SecurityDefinition] = field(default_factory=list)
    source: Optional[Path] = None

    @property
    def symbols(self) -> List[str]:
        return [p.symbol for p in self.positions]

    def __len__(self) -> int:
        return len(self.positions)


class PositionLoader:
    """
    Reads positions from CSV.

    Usage:
        loaded = PositionLoader(Path("config/positions.csv")).load()
        for position in loaded.positions:
            portfolio.add_position(position)
        for security in loaded.securities:
            catalog.register(security)
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> LoadedPositions:
        """
        Raises:
            PositionLoadError: If the file is missing, has no header, or a
                row is malformed
        """
        source = str(self.path)
        if not self.path.exists():
            raise PositionLoadError("position file not found", source=source)

        df = self._read_frame(source)
        columns = self._map_columns(df, source)

        loaded = LoadedPositions(source=self.path)
        seen: Dict[str, int] = {}

        for index, row in enumerate(df.itertuples(index=False, name=None)):
            line = index + 2  # header is line 1
            values = {name: str(row[pos]).strip() for name, pos in columns.items()}

            if not any(str(v).strip() for v in row):
                continue

            position, security = self._parse_row(values, line, source)
            if position.symbol in seen:
                raise PositionLoadError(
                    f"duplicate symbol {position.symbol} (first seen on line {seen[position.symbol]})",
                    line=line, source=source,
                )
            seen[position.symbol] = line
            loaded.positions.append(position)
            if security is not None:
                loaded.securities.append(security)

        logger.info(f"Loaded {len(loaded.positions)} positions from {self.path}", extra={
            "positions": len(loaded.positions),
            "inline_securities": len(loaded.securities),
        })
        return loaded

    def _read_frame(self, source: str) -> pd.DataFrame:
        try:
            df = pd.read_csv(
                self.path,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
                skipinitialspace=True,
            )
        except pd.errors.EmptyDataError as e:
            raise PositionLoadError("file is empty", line=1, source=source) from e
        except pd.errors.ParserError as e:
            raise PositionLoadError(f"cannot parse CSV: {e}", source=source) from e
        return df.fillna("")

    @staticmethod
    def _map_columns(df: pd.DataFrame, source: str) -> Dict[str, int]:
        normalized = [str(c).strip().lower() for c in df.columns]
        missing = [c for c in REQUIRED_COLUMNS if c not in normalized]
        if missing:
            raise PositionLoadError(
                f"header must contain {', '.join(c.title() for c in REQUIRED_COLUMNS)} "
                f"(missing {', '.join(c.title() for c in missing)})",
                line=1, source=source,
            )
        return {
            name: normalized.index(name)
            for name in REQUIRED_COLUMNS + OPTIONAL_COLUMNS
            if name in normalized
        }

    @staticmethod
    def _parse_row(values: Dict[str, str], line: int, source: str):
        symbol = normalize_symbol(values.get("symbol"))
        if not symbol:
            raise PositionLoadError("missing symbol", line=line, source=source)

        try:
            size = Decimal(values.get("size", ""))
        except InvalidOperation as e:
            raise PositionLoadError(f"invalid size {values.get('size')!r} for {symbol}", line=line, source=source) from e
        if not size.is_finite():
            raise PositionLoadError(f"invalid size {values.get('size')!r} for {symbol}", line=line, source=source)

        position = Position(symbol=symbol, size=size)

        type_text = values.get("type", "").upper()
        if not type_text or type_text == SecurityKind.STOCK.value:
            return position, None

        try:
            kind = SecurityKind(type_text)
        except ValueError as e:
            raise PositionLoadError(f"unknown security type {values.get('type')!r}", line=line, source=source) from e

        try:
            strike = Decimal(values.get("strike", ""))
            if not strike.is_finite():
                raise InvalidOperation(values.get("strike"))
        except InvalidOperation as e:
            raise PositionLoadError(f"invalid strike {values.get('strike')!r} for {symbol}", line=line, source=source) from e

        try:
            maturity = date.fromisoformat(values.get("maturity", ""))
        except ValueError as e:
            raise PositionLoadError(f"invalid maturity {values.get('maturity')!r} for {symbol}", line=line, source=source) from e

        try:
            security = SecurityDefinition.option(symbol, kind, strike, maturity)
        except ValueError as e:
            raise PositionLoadError(str(e), line=line, source=source) from e

        return position, security


def load_positions(path: Path) -> LoadedPositions:
    """Convenience wrapper around PositionLoader."""
    return PositionLoader(path).load()
