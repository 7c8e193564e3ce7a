"""Technical indicators over OHLCV frames.

Includes:
- Moving Averages: SMA, EMA
- Momentum: RSI, MACD
- Volatility: ATR, Bollinger Bands, Bollinger width
- Trend: regression trend strength, swing points
- Volume: volume ratio, percentile rank

All functions are pure. Series outputs keep the input index; the warm-up
region is NaN so callers can tell "not enough data" from a real zero.
"""

from typing import List, Optional, Tuple

import numpy as np
import pandas as pd


def calculate_sma(series: pd.Series, period: int) -> pd.Series:
    """Simple moving average."""
    return series.rolling(window=period, min_periods=period).mean()


def calculate_ema(series: pd.Series, period: int) -> pd.Series:
    """Exponential moving average (span=period), NaN for the first period-1 bars."""
    ema = series.ewm(span=period, adjust=False).mean()
    if len(ema) >= 1:
        ema.iloc[: period - 1] = np.nan
    return ema


def calculate_rsi(close: pd.Series, period: int = 14) -> pd.Series:
    """Calculate RSI with Wilder's smoothing.

    Args:
        close: Close prices
        period: Lookback period (default: 14)

    Returns:
        Series in [0, 100]; 100 when there are no losses in the window,
        50 when the window is flat
    """
    delta = close.diff()
    gain = delta.clip(lower=0)
    loss = -delta.clip(upper=0)

    avg_gain = gain.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    avg_loss = loss.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()

    rs = avg_gain / avg_loss.replace(0, np.nan)
    rsi = 100 - 100 / (1 + rs)
    rsi = rsi.where(avg_loss > 0, 100.0)
    rsi = rsi.where((avg_gain > 0) | (avg_loss > 0), 50.0)
    return rsi.where(avg_gain.notna())


def calculate_macd(close: pd.Series, fast: int = 12, slow: int = 26,
                   signal: int = 9) -> pd.DataFrame:
    """Calculate MACD.

    Returns:
        DataFrame with columns dif (fast EMA - slow EMA), dea (signal line
        of dif) and hist (dif - dea)
    """
    dif = (close.ewm(span=fast, adjust=False).mean()
           - close.ewm(span=slow, adjust=False).mean())
    dea = dif.ewm(span=signal, adjust=False).mean()
    out = pd.DataFrame({"dif": dif, "dea": dea, "hist": dif - dea})
    if len(out) < slow:
        out.loc[:, :] = np.nan
    return out


def calculate_bollinger(close: pd.Series, period: int = 20,
                        num_std: float = 2.0) -> pd.DataFrame:
    """Bollinger Bands (population std).

    Returns:
        DataFrame with columns upper, middle, lower
    """
    middle = close.rolling(window=period, min_periods=period).mean()
    std = close.rolling(window=period, min_periods=period).std(ddof=0)
    return pd.DataFrame({
        "upper": middle + num_std * std,
        "middle": middle,
        "lower": middle - num_std * std,
    })


def calculate_bb_width(close: pd.Series, period: int = 20, num_std: float = 2.0) -> pd.Series:
    """Bollinger width as a fraction of the middle band."""
    bands = calculate_bollinger(close, period, num_std)
    middle = bands["middle"].replace(0, np.nan)
    return (bands["upper"] - bands["lower"]) / middle


def true_range(df: pd.DataFrame) -> pd.Series:
    prev_close = df["close"].shift(1)
    tr = pd.concat([
        df["high"] - df["low"],
        (df["high"] - prev_close).abs(),
        (df["low"] - prev_close).abs(),
    ], axis=1).max(axis=1)
    return tr


def calculate_atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
    """Calculate Average True Range (Wilder's smoothing).

    Args:
        df: DataFrame with 'high', 'low', 'close' columns
        period: ATR period (default 14)

    Returns:
        Series with ATR values, NaN until ``period`` bars are available
    """
    if df.empty:
        return pd.Series(dtype=float)
    return true_range(df).ewm(alpha=1 / period, adjust=False, min_periods=period).mean()


def calculate_trend_strength(close: pd.Series, period: int = 20) -> float:
    """Signed trend strength of the last ``period`` closes.

    Linear-regression slope per bar as a fraction of mean price, scaled by
    R^2 so noisy drifts score lower than clean ones. Returns 0.0 on short or
    degenerate input.
    """
    window = close.dropna().tail(period).to_numpy(dtype=float)
    if len(window) < max(3, period):
        return 0.0
    x = np.arange(len(window), dtype=float)
    slope, intercept = np.polyfit(x, window, 1)
    mean_price = window.mean()
    if mean_price <= 0:
        return 0.0
    fitted = slope * x + intercept
    ss_res = float(((window - fitted) ** 2).sum())
    ss_tot = float(((window - mean_price) ** 2).sum())
    r2 = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0
    return float(slope / mean_price * r2 * 100.0)


def volume_ratio(volume: pd.Series, lookback: int = 20, include_last: bool = True) -> float:
    """Last volume divided by the average of the lookback window.

    Returns 0.0 when the window is short or its mean is not positive.
    """
    if len(volume) < lookback:
        return 0.0
    window = volume.iloc[-lookback:] if include_last else volume.iloc[-lookback - 1:-1]
    if len(window) < lookback:
        return 0.0
    mean = float(window.mean())
    if mean <= 0:
        return 0.0
    return float(volume.iloc[-1]) / mean


def percentile_rank(series: pd.Series, value: float) -> float:
    """Percentage (0-100) of non-NaN values in ``series`` strictly below value."""
    values = series.dropna().to_numpy(dtype=float)
    if len(values) == 0:
        return 50.0
    return float((values < value).sum()) / len(values) * 100.0


def find_swing_points(df: pd.DataFrame, left: int = 2,
                      right: int = 2) -> Tuple[List[Tuple[int, float]], List[Tuple[int, float]]]:
    """Find pivot highs and lows.

    A pivot high is strictly higher than the ``left`` bars before and the
    ``right`` bars after it (mirror for lows).

    Returns:
        (swing_highs, swing_lows) as lists of (position, price)
    """
    highs = df["high"].to_numpy(dtype=float)
    lows = df["low"].to_numpy(dtype=float)
    swing_highs: List[Tuple[int, float]] = []
    swing_lows: List[Tuple[int, float]] = []

    for i in range(left, len(df) - right):
        neighbours = list(range(i - left, i)) + list(range(i + 1, i + right + 1))
        if all(highs[i] > highs[j] for j in neighbours):
            swing_highs.append((i, float(highs[i])))
        if all(lows[i] < lows[j] for j in neighbours):
            swing_lows.append((i, float(lows[i])))

    return swing_highs, swing_lows


def last_value(series: pd.Series) -> Optional[float]:
    """Last element as float, or None if the series is empty or ends in NaN."""
    if series is None or len(series) == 0:
        return None
    value = series.iloc[-1]
    if pd.isna(value):
        return None
    return float(value)
