"""Cross-symbol statistical arbitrage on 4h closes.

Peers come from ``DetectionContext.peers``. Three opportunity types are
scored and the best one sets the direction for this symbol:

- PRICING: close ratio against a same-quote peer more than 2 sigma from its mean
- SECTOR_ROTATION: this symbol is the strongest or weakest of its sector by
  volatility-adjusted return, with a spread above 0.05 (mean reversion)
- SPOT_FUTURES: USDT spot vs USD contract basis more than 2 sigma from its mean
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import numpy as np
import pandas as pd
import structlog

from ..core.types import CandidateSignal, Direction, ModelId, SignalCategory
from ..data.candles import MarketView
from ..features.indicators import calculate_atr
from .common import DetectionContext, atr_pct, clamp, make_candidate, sufficiency_adjust

logger = structlog.get_logger(__name__)

MODEL_ID = ModelId.CORRELATION_ARBITRAGE

TIMEFRAME = "4h"
MIN_BARS = 20
Z_THRESHOLD = 2.0
MIN_SECTOR_SPREAD = 0.05

QUOTES = ("USDT", "USD", "EUR", "GBP", "BTC", "ETH")

SECTORS = {
    "major": ("BTC", "ETH", "BNB", "XRP"),
    "defi": ("UNI", "AAVE", "COMP", "MKR", "SNX"),
    "layer1": ("ADA", "DOT", "SOL", "AVAX", "MATIC"),
}


@dataclass(frozen=True)
class ArbitrageOpportunity:
    kind: str
    score: float
    long_symbol: str
    short_symbol: str
    description: str


def detect(symbol: str, view: MarketView, ctx: DetectionContext) -> Optional[CandidateSignal]:
    base = view.frame(TIMEFRAME)
    if len(base) < MIN_BARS:
        return None

    peers = {
        s: v.frame(TIMEFRAME) for s, v in ctx.peers.items()
        if s != symbol and v.length(TIMEFRAME) >= MIN_BARS
    }
    if not peers:
        return None

    quote = quote_currency(symbol)
    related = {s: df for s, df in peers.items() if quote_currency(s) == quote}

    opportunities: List[ArbitrageOpportunity] = []
    opportunities.extend(pricing_opportunities(symbol, base, related))
    opportunities.extend(sector_opportunities(symbol, base, peers))
    opportunities.extend(basis_opportunities(symbol, base, peers))
    if not opportunities:
        return None

    best = max(opportunities, key=lambda o: o.score)
    if best.long_symbol == symbol:
        direction = Direction.LONG
    elif best.short_symbol == symbol:
        direction = Direction.SHORT
    else:
        return None

    confidence = 0.7 + min(0.3, best.score / 50.0)
    confidence = sufficiency_adjust(
        confidence, len(base), atr_pct(base),
        few_bars=30, few_mult=0.7, many_bars=100, many_mult=1.1,
        high_vol_pct=5.0, high_vol_mult=0.7,
    )
    confidence = clamp(confidence * 0.95, 0.1, 1.0)

    metadata = {
        "kind": best.kind,
        "score": best.score,
        "long_symbol": best.long_symbol,
        "short_symbol": best.short_symbol,
        "opportunities": len(opportunities),
        "score_categories": {"structure": 2.0, "momentum": 1.0},
    }
    return make_candidate(
        MODEL_ID, direction, min(8.0, best.score), confidence,
        best.description, view, TIMEFRAME, SignalCategory.DEFAULT, metadata,
    )


def quote_currency(symbol: str) -> str:
    upper = symbol.upper()
    for quote in QUOTES:
        if upper.endswith(quote):
            return quote
    return upper[-4:] if len(upper) >= 4 else upper


def base_currency(symbol: str) -> str:
    return symbol.upper()[: len(symbol) - len(quote_currency(symbol))]


def sector_of(symbol: str) -> str:
    base = base_currency(symbol)
    for name, members in SECTORS.items():
        if base in members:
            return name
    return "other"


def zscore_last(values: np.ndarray) -> Optional[float]:
    """z-score of the last element against the whole array (population std)."""
    if len(values) < 2:
        return None
    std = float(values.std())
    if std <= 0:
        return None
    return (float(values[-1]) - float(values.mean())) / std


def _aligned_closes(a: pd.DataFrame, b: pd.DataFrame):
    n = min(len(a), len(b))
    return a["close"].to_numpy(dtype=float)[-n:], b["close"].to_numpy(dtype=float)[-n:]


def pricing_opportunities(symbol: str, base: pd.DataFrame,
                          related: Mapping[str, pd.DataFrame]) -> List[ArbitrageOpportunity]:
    out = []
    for peer, df in sorted(related.items()):
        num, den = _aligned_closes(base, df)
        if np.any(den <= 0):
            continue
        z = zscore_last(num / den)
        if z is None or abs(z) <= Z_THRESHOLD:
            continue
        if z > 0:
            long_s, short_s = peer, symbol
        else:
            long_s, short_s = symbol, peer
        out.append(ArbitrageOpportunity(
            "PRICING", abs(z), long_s, short_s,
            f"{symbol}/{peer} ratio {z:+.2f} sigma from mean: long {long_s}, short {short_s}",
        ))
    return out


def relative_strength(df: pd.DataFrame) -> Optional[float]:
    """Return over the window divided by mean ATR% (plain return if ATR is zero)."""
    first = float(df["close"].iloc[0])
    if first <= 0:
        return None
    ret = (float(df["close"].iloc[-1]) - first) / first
    atr = calculate_atr(df, 14).dropna()
    avg_atr = float(atr.mean()) if len(atr) else 0.0
    if avg_atr > 0:
        return ret / (avg_atr / first)
    return ret


def sector_opportunities(symbol: str, base: pd.DataFrame,
                         peers: Mapping[str, pd.DataFrame]) -> List[ArbitrageOpportunity]:
    sector = sector_of(symbol)
    members = {symbol: base}
    members.update({s: df for s, df in peers.items() if sector_of(s) == sector})
    if len(members) < 2:
        return []

    strengths: Dict[str, float] = {}
    for s, df in members.items():
        rs = relative_strength(df)
        if rs is not None:
            strengths[s] = rs
    if symbol not in strengths or len(strengths) < 2:
        return []

    strongest = max(strengths, key=strengths.get)
    weakest = min(strengths, key=strengths.get)
    spread = strengths[strongest] - strengths[weakest]
    if spread <= MIN_SECTOR_SPREAD or strongest == weakest:
        return []

    if symbol == strongest:
        long_s, short_s = weakest, symbol
    elif symbol == weakest:
        long_s, short_s = symbol, strongest
    else:
        return []
    return [ArbitrageOpportunity(
        "SECTOR_ROTATION", spread * 10.0, long_s, short_s,
        f"{sector} rotation spread {spread:.4f}: long {long_s}, short {short_s}",
    )]


def basis_opportunities(symbol: str, spot: pd.DataFrame,
                        peers: Mapping[str, pd.DataFrame]) -> List[ArbitrageOpportunity]:
    if not symbol.upper().endswith("USDT"):
        return []
    futures_symbol = symbol.upper()[:-4] + "USD"
    futures = peers.get(futures_symbol)
    if futures is None:
        return []

    s, f = _aligned_closes(spot, futures)
    z = zscore_last(s - f)
    if z is None or abs(z) <= Z_THRESHOLD:
        return []
    if z > 0:
        long_s, short_s = futures_symbol, symbol
    else:
        long_s, short_s = symbol, futures_symbol
    return [ArbitrageOpportunity(
        "SPOT_FUTURES", abs(z), long_s, short_s,
        f"{symbol} basis {z:+.2f} sigma from mean: long {long_s}, short {short_s}",
    )]
