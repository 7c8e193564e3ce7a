"""Regime gate: static regime -> allowed model table."""

import logging
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from ..config import DEFAULT_GATE_TABLE, GateConfig
from ..core.types import ModelId, Regime

logger = logging.getLogger(__name__)


class RegimeGate:
    """Immutable compatibility table between regimes and signal models.

    The table is frozen at construction, so ``is_allowed`` is a pure lookup.
    Regimes missing from the table allow no models.
    """

    def __init__(self, table: Optional[Union[GateConfig, Mapping[str, Iterable[str]]]] = None):
        if table is None:
            raw = DEFAULT_GATE_TABLE
        elif isinstance(table, GateConfig):
            raw = table.table
        else:
            raw = table

        frozen: Dict[Regime, FrozenSet[ModelId]] = {}
        for regime_name, models in raw.items():
            try:
                regime = Regime(regime_name)
                frozen[regime] = frozenset(ModelId(m) for m in models)
            except ValueError as e:
                raise ValueError(f"Invalid gate table entry for '{regime_name}': {e}")
        self._table: Mapping[Regime, FrozenSet[ModelId]] = frozen

    def is_allowed(self, model_id: ModelId, regime: Regime) -> bool:
        return model_id in self._table.get(regime, frozenset())

    def allowed_models(self, regime: Regime) -> FrozenSet[ModelId]:
        return self._table.get(regime, frozenset())

    def regimes_for(self, model_id: ModelId) -> FrozenSet[Regime]:
        """All regimes in which ``model_id`` may contribute."""
        return frozenset(r for r, models in self._table.items() if model_id in models)

    def partition(self, models: Iterable, regime: Regime) -> Tuple[List, List]:
        """Split models into (allowed, rejected) for ``regime``.

        Models are anything exposing ``allowed_in(regime)``.
        """
        allowed, rejected = [], []
        for model in models:
            (allowed if model.allowed_in(regime) else rejected).append(model)
        if rejected:
            logger.debug("Gate %s rejected %s", regime.value,
                         [m.model_id.value for m in rejected])
        return allowed, rejected

    def to_dict(self) -> Dict[str, List[str]]:
        return {r.value: sorted(m.value for m in models) for r, models in self._table.items()}
