"""Fibonacci retracement levels and data freshness classification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Sequence

from stockanalyzer.marketdata.base import PriceBar
from stockanalyzer.utils import as_utc, utc_now

DEFAULT_RATIOS: tuple[float, ...] = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)

FRESH_HOURS = 4
AGING_HOURS = 24


@dataclass(frozen=True)
class SwingPoints:
    high: float
    low: float
    high_date: date
    low_date: date


def find_swing_points(bars: Sequence[PriceBar]) -> SwingPoints:
    """Highest high and lowest low; ties keep the earliest bar."""
    highest = bars[0]
    lowest = bars[0]
    for bar in bars:
        if bar.high > highest.high:
            highest = bar
        if bar.low < lowest.low:
            lowest = bar
    return SwingPoints(high=highest.high, low=lowest.low, high_date=highest.date, low_date=lowest.date)


def calculate(
    bars: Sequence[PriceBar],
    swing: SwingPoints | None = None,
    ratios: Sequence[float] = DEFAULT_RATIOS,
) -> dict[str, Any] | None:
    if not bars:
        return None
    swing = swing or find_swing_points(bars)
    price_range = swing.high - swing.low
    return {
        "swing_high": swing.high,
        "swing_low": swing.low,
        "high_date": swing.high_date.isoformat(),
        "low_date": swing.low_date.isoformat(),
        "range": price_range,
        "is_uptrend": swing.high_date > swing.low_date,
        "levels": [
            {
                "ratio": ratio,
                "price": swing.high - price_range * ratio,
                "label": f"{ratio * 100:.1f}%",
            }
            for ratio in ratios
        ],
    }


def recalculate_from_anchor(
    bars: Sequence[PriceBar],
    anchor: PriceBar,
    ratios: Sequence[float] = DEFAULT_RATIOS,
) -> dict[str, Any] | None:
    """Re-anchor one swing end at ``anchor``.

    An anchor above the midpoint of the automatic swing replaces the swing
    high; otherwise its high replaces the swing low.
    """
    if not bars:
        return None
    current = find_swing_points(bars)
    midpoint = (current.high + current.low) / 2
    if anchor.high > midpoint:
        swing = SwingPoints(high=anchor.high, low=current.low, high_date=anchor.date, low_date=current.low_date)
    else:
        swing = SwingPoints(high=current.high, low=anchor.high, high_date=current.high_date, low_date=anchor.date)
    return calculate(bars, swing, ratios)


def freshness(last_update: datetime | str | None, now: datetime | None = None) -> dict[str, Any]:
    """Classify a last-update instant as fresh, aging or stale."""
    if last_update is None:
        return {"status": "stale", "hours_old": None, "message": "Never updated"}
    if isinstance(last_update, str):
        last_update = datetime.fromisoformat(last_update)
    hours_old = ((now or utc_now()) - as_utc(last_update)).total_seconds() / 3600
    if hours_old < FRESH_HOURS:
        status, message = "fresh", f"Updated {round(hours_old)}h ago"
    elif hours_old < AGING_HOURS:
        status, message = "aging", f"Updated {round(hours_old)}h ago"
    else:
        status, message = "stale", f"Updated {round(hours_old / 24)}d ago"
    return {"status": status, "hours_old": round(hours_old, 2), "message": message}
