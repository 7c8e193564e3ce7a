from .candles import MarketView, candles_to_frame, timeframe_minutes

__all__ = ["MarketView", "candles_to_frame", "timeframe_minutes"]
