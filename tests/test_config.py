"""Tests for configuration loading and overrides."""

from pathlib import Path

import pytest

from regimefusion.config import (
    EngineConfig,
    _set_nested_value,
    load_config,
    parse_overrides,
)

DEFAULT_YAML = Path(__file__).parent.parent / "configs" / "default.yaml"


class TestEngineConfig:
    """EngineConfig construction and validation."""

    def test_defaults(self):
        """Defaults match the documented thresholds."""
        cfg = EngineConfig()
        assert cfg.fusion.margin == 2.0
        assert cfg.risk.max_position_fraction == 0.05
        assert cfg.adaptive.signal_confirmation_threshold == 2
        assert cfg.lifecycle.default_ttl_hours == 4.0
        assert cfg.regime.min_candles == 50

    def test_default_yaml_matches_dataclasses(self):
        """The shipped YAML mirrors the dataclass defaults."""
        cfg = EngineConfig.from_yaml(str(DEFAULT_YAML))
        assert cfg.to_dict() == EngineConfig().to_dict()

    def test_partial_dict_keeps_defaults(self):
        """Only the given keys change."""
        cfg = EngineConfig.from_dict({"fusion": {"margin": 3.0}})
        assert cfg.fusion.margin == 3.0
        assert cfg.fusion.range_mult == 0.8

    def test_unknown_section_raises(self):
        """Unknown sections are rejected."""
        with pytest.raises(ValueError, match="Unknown config sections"):
            EngineConfig.from_dict({"nonsense": {}})

    def test_unknown_key_raises(self):
        """Unknown keys name their section."""
        with pytest.raises(ValueError, match="fusion"):
            EngineConfig.from_dict({"fusion": {"bogus": 1}})

    def test_gate_table_bad_regime(self):
        """Gate table regime names are validated."""
        with pytest.raises(ValueError, match="unknown regime"):
            EngineConfig.from_dict({"gate": {"table": {"SIDEWAYS": []}}})

    def test_gate_table_bad_model(self):
        """Gate table model names are validated."""
        with pytest.raises(ValueError, match="unknown models"):
            EngineConfig.from_dict({"gate": {"table": {"RANGE": ["MAGIC"]}}})

    def test_save_and_reload(self, tmp_path):
        """save_yaml output loads back to the same config."""
        cfg = EngineConfig.from_dict({"risk": {"base_risk_fraction": 0.01}})
        path = tmp_path / "cfg.yaml"
        cfg.save_yaml(str(path))
        assert EngineConfig.from_yaml(str(path)).to_dict() == cfg.to_dict()


class TestLoadConfig:
    """load_config and override parsing."""

    def test_missing_file(self, tmp_path):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_none_path_gives_defaults(self):
        """No path means defaults."""
        assert load_config().to_dict() == EngineConfig().to_dict()

    def test_overrides_are_coerced(self):
        """String overrides become numbers and booleans."""
        cfg = load_config(None, parse_overrides([
            "fusion.margin=2.5",
            "pipeline.max_workers=8",
            "lifecycle.auto_confirm=false",
        ]))
        assert cfg.fusion.margin == 2.5
        assert cfg.pipeline.max_workers == 8
        assert cfg.lifecycle.auto_confirm is False

    def test_set_nested_value_creates_levels(self):
        """Intermediate dictionaries are created on demand."""
        data = {}
        _set_nested_value(data, "a.b.c", "3")
        assert data == {"a": {"b": {"c": 3}}}

    def test_parse_overrides_ignores_malformed(self):
        """Arguments without '=' are skipped."""
        assert parse_overrides(["x=1", "oops", " y = two "]) == {"x": "1", "y": "two"}
