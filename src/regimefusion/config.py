"""
Configuration management for the regime fusion engine.

All thresholds live in plain dataclasses with defaults so that an
``EngineConfig()`` is usable without any file. YAML files only need to
carry the values they change.
"""
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .core.types import ModelId, Regime


DEFAULT_GATE_TABLE: Dict[str, List[str]] = {
    Regime.STRONG_TREND.value: [
        ModelId.TREND_MOMENTUM_RESONANCE.value,
        ModelId.KEY_LEVEL_BATTLEGROUNDS.value,
        ModelId.INSTITUTIONAL_FLOW.value,
    ],
    Regime.WEAK_TREND.value: [
        ModelId.TREND_MOMENTUM_RESONANCE.value,
        ModelId.VOLATILITY_BREAKOUT.value,
    ],
    Regime.RANGE.value: [
        ModelId.KEY_LEVEL_BATTLEGROUNDS.value,
        ModelId.CORRELATION_ARBITRAGE.value,
    ],
    Regime.SQUEEZE.value: [
        ModelId.VOLATILITY_BREAKOUT.value,
        ModelId.EXTREME_SENTIMENT.value,
    ],
    Regime.VOLATILITY_EXPANSION.value: [
        ModelId.TREND_MOMENTUM_RESONANCE.value,
        ModelId.INSTITUTIONAL_FLOW.value,
    ],
}


@dataclass
class RegimeConfig:
    """Regime classifier configuration."""
    primary_timeframe: str = "1h"
    min_candles: int = 50
    atr_period: int = 14
    strong_sma50_dev: float = 0.03   # |close/SMA50 - 1|
    strong_sma20_dev: float = 0.02
    weak_sma50_dev: float = 0.015
    weak_sma20_dev: float = 0.01
    squeeze_atr_ratio: float = 1.2   # ATR <= ratio * min(ATR, lookback)
    squeeze_lookback: int = 50
    expansion_ratio: float = 1.5     # mean(recent ATR) > ratio * mean(prior ATR)
    expansion_recent: int = 5
    expansion_base: int = 15
    range_lookback: int = 50
    range_max_width: float = 0.04


@dataclass
class GateConfig:
    """Regime -> allowed model table."""
    table: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_GATE_TABLE.items()}
    )


@dataclass
class FusionConfig:
    """Signal fusion configuration."""
    margin: float = 2.0              # hysteresis band in strength units
    max_signals: int = 6             # signal count for the confidence curve
    count_confidence_scale: float = 0.5
    strong_trend_mult: float = 1.5   # trend-aligned direction only
    weak_trend_mult: float = 1.2
    range_mult: float = 0.8
    expansion_mult: float = 1.3
    squeeze_mult: float = 1.4


@dataclass
class ScoringConfig:
    """Category caps for the fused score."""
    momentum_cap: float = 2.0
    structure_cap: float = 4.0
    volume_cap: float = 2.0
    volatility_cap: float = 1.0
    sentiment_cap: float = 1.0
    htf_bonus: float = 1.0
    max_score: float = 10.0
    level_1_min: float = 8.0
    level_2_min: float = 6.0


@dataclass
class ValidatorConfig:
    """Signal validator configuration."""
    min_candles: int = 5
    volume_lookback: int = 20
    volume_ratio_min: float = 1.2
    trend_period: int = 50
    counter_trend_min_score: float = 7.0
    min_score: float = 4.0


@dataclass
class LifecycleConfig:
    """Signal lifecycle configuration."""
    default_ttl_hours: float = 4.0
    auto_confirm: bool = True


@dataclass
class RiskConfig:
    """Risk / position sizing configuration."""
    base_risk_fraction: float = 0.02
    max_position_fraction: float = 0.05   # hard cap, fraction of equity
    fallback_stop_pct: float = 0.02
    structural_atr_mult: float = 1.5
    false_breakout_atr_mult: float = 0.5
    breakout_atr_mult: float = 0.3
    atr_period: int = 14
    regime_risk_factors: Dict[str, float] = field(default_factory=lambda: {
        Regime.STRONG_TREND.value: 1.2,
        Regime.WEAK_TREND.value: 1.0,
        Regime.RANGE.value: 0.7,
        Regime.SQUEEZE.value: 0.5,
        Regime.VOLATILITY_EXPANSION.value: 0.8,
    })


@dataclass
class AdaptiveConfig:
    """Adaptive parameter defaults and bounds."""
    signal_confirmation_threshold: float = 2
    atr_stop_loss_multiplier: float = 1.5
    atr_take_profit_multiplier: float = 2.0
    cooldown_hours_level_1: float = 2.0
    cooldown_hours_level_2: float = 1.0
    cooldown_hours_level_3: float = 4.0
    model_weight: float = 1.0
    history_size: int = 30
    window_days: float = 7.0
    low_win_rate: float = 0.45
    high_win_rate: float = 0.65
    min_sharpe: float = 0.8
    max_drawdown: float = 0.15
    threshold_min: float = 1
    threshold_max: float = 3
    stop_multiplier_step: float = 0.2
    stop_multiplier_max: float = 2.0
    weight_step: float = 0.1
    weight_min: float = 0.5


@dataclass
class ModelConfig:
    """Signal model switches."""
    enabled: List[str] = field(default_factory=lambda: [m.value for m in ModelId])


@dataclass
class PipelineConfig:
    """Pipeline driver configuration."""
    symbols: List[str] = field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    timeframes: List[str] = field(default_factory=lambda: ["5m", "15m", "1h", "4h", "1d"])
    candle_limit: int = 250
    max_workers: int = 4
    default_equity: float = 10000.0


@dataclass
class EngineConfig:
    """Root configuration."""
    regime: RegimeConfig = field(default_factory=RegimeConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_yaml(cls, path: str) -> 'EngineConfig':
        """Load config from YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Create config from dictionary. Unknown sections or keys raise ValueError."""
        sections = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(sections)
        if unknown:
            raise ValueError(f"Unknown config sections: {sorted(unknown)}")

        kwargs = {}
        for name, f in sections.items():
            section_cls = f.default_factory  # type: ignore[misc]
            kwargs[name] = _build_section(section_cls, data.get(name) or {}, name)

        cfg = cls(**kwargs)
        cfg.validate()
        return cfg

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    def save_yaml(self, path: str) -> None:
        """Save config to YAML file."""
        with open(path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

    def validate(self) -> None:
        """Check enum names in the gate table, risk factors and model list."""
        regimes = {r.value for r in Regime}
        models = {m.value for m in ModelId}

        for regime_name, allowed in self.gate.table.items():
            if regime_name not in regimes:
                raise ValueError(f"gate.table: unknown regime '{regime_name}'")
            bad = [m for m in allowed if m not in models]
            if bad:
                raise ValueError(f"gate.table[{regime_name}]: unknown models {bad}")

        for regime_name in self.risk.regime_risk_factors:
            if regime_name not in regimes:
                raise ValueError(f"risk.regime_risk_factors: unknown regime '{regime_name}'")

        bad = [m for m in self.models.enabled if m not in models]
        if bad:
            raise ValueError(f"models.enabled: unknown models {bad}")


def _build_section(section_cls, data: Dict[str, Any], name: str):
    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return section_cls(**data)


def load_config(config_path: Optional[str | Path] = None,
                overrides: Optional[Dict[str, Any]] = None) -> EngineConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML config file (None = defaults only)
        overrides: Optional dict of config overrides (e.g., {"fusion.margin": 2.5})

    Returns:
        EngineConfig instance
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

    if overrides:
        for key, value in overrides.items():
            _set_nested_value(data, key, value)

    return EngineConfig.from_dict(data)


def _set_nested_value(data: dict, key: str, value: Any) -> None:
    """Set a nested value in a dictionary using dot notation.

    Args:
        data: Dictionary to update
        key: Dot-separated key path (e.g., "fusion.margin")
        value: Value to set
    """
    keys = key.split(".")
    current = data

    for k in keys[:-1]:
        if k not in current or current[k] is None:
            current[k] = {}
        current = current[k]

    if isinstance(value, str):
        try:
            if "." in value:
                value = float(value)
            else:
                value = int(value)
        except ValueError:
            if value.lower() == "true":
                value = True
            elif value.lower() == "false":
                value = False

    current[keys[-1]] = value


def parse_overrides(override_args: List[str]) -> Dict[str, Any]:
    """Parse CLI-style ``key=value`` strings into an overrides dict."""
    overrides = {}
    for arg in override_args:
        if "=" in arg:
            key, value = arg.split("=", 1)
            overrides[key.strip()] = value.strip()
    return overrides
