"""
Price change detection.

Compares each incoming price against the last committed snapshot and
classifies it as UP, DOWN, SAME or NEW.

Detection is split in two steps so the update cycle can throw away a
failed cycle:
- classify(prices) is pure and returns records plus the merged snapshot
- commit(result) swaps the merged snapshot in

detect() does both under the detector lock.
"""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from threading import Lock
from typing import Dict, Mapping, Optional, Tuple

from navdesk.logging import get_logger, LogStream
from navdesk.market.snapshot import PriceSnapshot, normalize_prices

logger = get_logger(LogStream.MARKET_DATA)

_PERCENT_QUANT = Decimal("0.0001")


class ChangeKind(str, Enum):
    """Direction of a price change."""
    UP = "UP"
    DOWN = "DOWN"
    SAME = "SAME"
    NEW = "NEW"

    @property
    def indicator(self) -> str:
        return _INDICATORS[self]


_INDICATORS = {
    ChangeKind.UP: "▲",
    ChangeKind.DOWN: "▼",
    ChangeKind.SAME: "=",
    ChangeKind.NEW: "●",
}


@dataclass(frozen=True)
class ChangeRecord:
    """Classification of one symbol's price against its previous value."""
    symbol: str
    kind: ChangeKind
    new_price: Decimal
    old_price: Optional[Decimal] = None

    @property
    def absolute_change(self) -> Optional[Decimal]:
        if self.old_price is None:
            return None
        return self.new_price - self.old_price

    @property
    def percentage_change(self) -> Optional[Decimal]:
        """Change as a percentage of the old price, 2 decimal places."""
        if self.old_price is None or self.old_price == 0:
            return None
        ratio = (self.new_price - self.old_price) / self.old_price
        return ratio.quantize(_PERCENT_QUANT, rounding=ROUND_HALF_UP) * 100

    @property
    def is_change(self) -> bool:
        return self.kind != ChangeKind.SAME

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'kind': self.kind.value,
            'old_price': str(self.old_price) if self.old_price is not None else None,
            'new_price': str(self.new_price),
        }


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of classifying one batch of prices."""
    records: Tuple[ChangeRecord, ...]
    snapshot: PriceSnapshot = field(default_factory=PriceSnapshot.empty, compare=False)

    @property
    def has_changes(self) -> bool:
        return any(r.is_change for r in self.records)

    @property
    def changed(self) -> Tuple[ChangeRecord, ...]:
        return tuple(r for r in self.records if r.is_change)

    def counts(self) -> Dict[ChangeKind, int]:
        counter = Counter(r.kind for r in self.records)
        return {kind: counter.get(kind, 0) for kind in ChangeKind}

    def get(self, symbol: str) -> Optional[ChangeRecord]:
        symbol = symbol.strip().upper()
        for record in self.records:
            if record.symbol == symbol:
                return record
        return None

    def summary(self) -> str:
        counts = self.counts()
        return (
            f"Changes: {counts[ChangeKind.UP]} UP, "
            f"{counts[ChangeKind.DOWN]} DOWN, "
            f"{counts[ChangeKind.NEW]} NEW"
        )


def classify_price(old_price: Optional[Decimal], new_price: Decimal) -> ChangeKind:
    if old_price is None:
        return ChangeKind.NEW
    if new_price > old_price:
        return ChangeKind.UP
    if new_price < old_price:
        return ChangeKind.DOWN
    return ChangeKind.SAME


class PriceChangeDetector:
    """
    Tracks the last committed prices and classifies new ones.

    Usage:
        detector = PriceChangeDetector()
        result = detector.detect({"AAPL": Decimal("150")})   # AAPL NEW
        result = detector.detect({"AAPL": Decimal("155")})   # AAPL UP
        result.summary()  # "Changes: 1 UP, 0 DOWN, 0 NEW"

    Symbols missing from a batch keep their last committed price.

    THREAD SAFETY:
    - detect() and commit() hold the detector lock
    - classify() reads one snapshot reference and never mutates state
    """

    def __init__(self, initial: Optional[PriceSnapshot] = None):
        self._lock = Lock()
        self._snapshot = initial or PriceSnapshot.empty()

    @property
    def snapshot(self) -> PriceSnapshot:
        """Last committed snapshot."""
        return self._snapshot

    def classify(self, prices: Mapping[str, object]) -> DetectionResult:
        """
        Classify prices against the committed snapshot without changing it.

        Records keep the input order. Comparison is exact Decimal equality,
        so 150.00 and 150.0 are SAME.
        """
        previous = self._snapshot
        updates = normalize_prices(prices)

        records = tuple(
            ChangeRecord(
                symbol=symbol,
                kind=classify_price(previous.price(symbol), price),
                new_price=price,
                old_price=previous.price(symbol),
            )
            for symbol, price in updates.items()
        )
        return DetectionResult(records=records, snapshot=previous.merge(updates))

    def commit(self, result: DetectionResult) -> None:
        """Make the result's snapshot the new reference for detection."""
        with self._lock:
            self._snapshot = result.snapshot

    def detect(self, prices: Mapping[str, object]) -> DetectionResult:
        """Classify and commit in one step."""
        with self._lock:
            result = self.classify(prices)
            self._snapshot = result.snapshot

        if result.has_changes:
            logger.debug(result.summary(), extra={"symbols": len(result.records)})
        return result

    def reset(self) -> None:
        with self._lock:
            self._snapshot = PriceSnapshot.empty()
