"""
YAML loader for CoupledConfig.

Accepted layout (every block optional):

    predictor_mode: phase_change        # or "temperature"
    phase_change:  {T_freeze, freeze_eps, second_freeze_drop, second_freeze_T_low,
                    thaw_cap_offset, modify_thaw_to_prev}
    projection:    {... state keys ..., denominator_tol}
    backtracking:  {enabled, max_iterations}
    history:       {max_size, use_derivatives, order}
    frozen_column: {enabled, water_table_height}

The flat option names (modify_thaw_to_prev, backtracking_enabled,
backtracking_max_iterations, history_max_size) are accepted at top level and
take precedence over the nested blocks.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .types import (
    BacktrackingConfig,
    CoupledConfig,
    FrozenColumnConfig,
    HistoryConfig,
    PhaseChangeConfig,
    ProjectionConfig,
)

logger = logging.getLogger(__name__)

_BLOCKS = {
    "phase_change": PhaseChangeConfig,
    "projection": ProjectionConfig,
    "backtracking": BacktrackingConfig,
    "history": HistoryConfig,
    "frozen_column": FrozenColumnConfig,
}

# flat name -> (block, field)
_FLAT_OPTIONS = {
    "modify_thaw_to_prev": ("phase_change", "modify_thaw_to_prev"),
    "backtracking_enabled": ("backtracking", "enabled"),
    "backtracking_max_iterations": ("backtracking", "max_iterations"),
    "history_max_size": ("history", "max_size"),
}


def _read_yaml_text(cfg_file: Path) -> str:
    try:
        return cfg_file.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return cfg_file.read_text()


def _build_block(name: str, raw: Mapping[str, Any]):
    cls = _BLOCKS[name]
    allowed = {f.name for f in dataclasses.fields(cls)}
    unknown = set(raw.keys()) - allowed
    if unknown:
        raise ValueError(f"Unsupported keys in '{name}': {sorted(unknown)}; allowed {sorted(allowed)}")
    return cls(**dict(raw))


def coupled_config_from_dict(raw: Mapping[str, Any]) -> CoupledConfig:
    """Build CoupledConfig from a parsed mapping (nested blocks + flat options)."""
    raw = dict(raw or {})
    allowed = set(_BLOCKS) | set(_FLAT_OPTIONS) | {"predictor_mode"}
    unknown = set(raw.keys()) - allowed
    if unknown:
        raise ValueError(f"Unsupported top-level config keys: {sorted(unknown)}")

    blocks: Dict[str, Dict[str, Any]] = {}
    for name in _BLOCKS:
        block = raw.get(name) or {}
        if not isinstance(block, Mapping):
            raise ValueError(f"Config block '{name}' must be a mapping, got {type(block).__name__}")
        blocks[name] = dict(block)
    for flat, (block, key) in _FLAT_OPTIONS.items():
        if flat in raw:
            if key in blocks[block] and blocks[block][key] != raw[flat]:
                logger.warning(
                    "Flat option %s=%r overrides %s.%s=%r", flat, raw[flat], block, key, blocks[block][key]
                )
            blocks[block][key] = raw[flat]

    return CoupledConfig(
        predictor_mode=str(raw.get("predictor_mode", "phase_change")),
        **{name: _build_block(name, blocks[name]) for name in _BLOCKS},
    )


def load_coupled_config(cfg_path: str | Path) -> CoupledConfig:
    """Load a YAML file into CoupledConfig."""
    cfg_file = Path(cfg_path).expanduser().resolve()
    raw = yaml.safe_load(_read_yaml_text(cfg_file)) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"{cfg_file}: top level must be a mapping")
    cfg = coupled_config_from_dict(raw)
    logger.info(
        "Loaded %s: predictor_mode=%s backtracking=%s(max=%d) history_max_size=%d",
        cfg_file.name,
        cfg.predictor_mode,
        cfg.backtracking.enabled,
        cfg.backtracking.max_iterations,
        cfg.history.max_size,
    )
    return cfg
