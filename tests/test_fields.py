"""
Composite fields, block vectors and the two-snapshot field store.
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from core.fields import NEXT, PREVIOUS, BlockVector, CompositeField, FieldStore, FunctionEvaluator
from core.logging_utils import get_log_level_from_env, is_root_rank, setup_logging
from core.mesh import build_column_mesh


# ============================================================================
# Vector arithmetic
# ============================================================================


def test_update_convention():
    x = CompositeField({"cell": [1.0, 2.0], "face": [3.0]})
    y = CompositeField({"cell": [10.0, 20.0], "face": [30.0]})
    y.update(2.0, x, 0.5)
    np.testing.assert_allclose(y.view("cell"), [7.0, 14.0])
    np.testing.assert_allclose(y.view("face"), [21.0])


def test_norms_ignore_ghosts():
    f = CompositeField({"cell": [3.0, 4.0, 100.0]}, {"cell": 2})
    assert f.norm2() == pytest.approx(5.0)
    assert f.norm_inf() == 4.0
    np.testing.assert_array_equal(f.view_owned("cell"), [3.0, 4.0])


def test_block_vector_copy_is_deep():
    v = BlockVector({"flow": CompositeField({"cell": [1.0]}), "energy": CompositeField({"cell": [2.0]})})
    w = v.copy()
    w.put_scalar(0.0)
    assert v.sub("flow")["cell", 0] == 1.0
    assert v.norm2() == pytest.approx(np.sqrt(5.0))


def test_incompatible_shapes_rejected():
    a = CompositeField({"cell": [1.0, 2.0]})
    b = CompositeField({"cell": [1.0]})
    with pytest.raises(ValueError, match="shape mismatch"):
        a.assign(b)
    with pytest.raises(KeyError, match="sub-vector"):
        BlockVector({"flow": a}).sub("energy")


# ============================================================================
# Store snapshots and evaluators
# ============================================================================


def test_commit_step_copies_next_into_previous():
    mesh = build_column_mesh(2, 0.1)
    store = FieldStore(mesh)
    T = CompositeField.zeros_like_mesh(mesh, value=270.0)
    store.set_field("temperature", T)
    store.set_scalar("atmospheric_pressure", 101325.0)
    store.set_time(5.0)

    store.commit_step()
    T.view("cell")[:] = 280.0

    assert store.get_field("temperature", NEXT) is T
    np.testing.assert_array_equal(store.get_field("temperature", PREVIOUS).view("cell"), 270.0)
    assert store.get_scalar("atmospheric_pressure", PREVIOUS) == 101325.0
    assert store.time(PREVIOUS) == 5.0


def test_unknown_field_and_snapshot():
    store = FieldStore(build_column_mesh(1))
    with pytest.raises(KeyError, match="not found"):
        store.get_field("pressure")
    with pytest.raises(ValueError, match="Unknown snapshot"):
        store.get_field("pressure", "current")


def test_evaluator_chain_recomputes_on_dependency_change():
    store = FieldStore(build_column_mesh(2))
    store.set_field("pressure", CompositeField({"cell": [1.0, 2.0]}))
    calls = []

    def doubled(s):
        calls.append("doubled")
        return CompositeField({"cell": 2.0 * s.get_field("pressure").view("cell")})

    def plus_one(s):
        calls.append("plus_one")
        return CompositeField({"cell": s.get_field("doubled").view("cell") + 1.0})

    store.register_evaluator(FunctionEvaluator("doubled", doubled, ("pressure",)))
    store.register_evaluator(FunctionEvaluator("plus_one", plus_one, ("doubled",)))

    assert store.recompute("plus_one", "flow")
    np.testing.assert_allclose(store.get_field("plus_one").view("cell"), [3.0, 5.0])
    assert not store.recompute("plus_one", "flow")
    assert calls == ["doubled", "plus_one"]

    store.set_field("pressure", CompositeField({"cell": [0.0, 0.0]}))
    assert store.recompute("plus_one", "flow")
    np.testing.assert_allclose(store.get_field("plus_one").view("cell"), [1.0, 1.0])

    with pytest.raises(ValueError, match="already registered"):
        store.register_evaluator(FunctionEvaluator("doubled", doubled))
    assert not store.get_evaluator("doubled").provides_region_capillary_curves()
    with pytest.raises(TypeError):
        store.get_evaluator("doubled").get_wrms()


# ============================================================================
# Logging helpers
# ============================================================================


def test_log_level_from_env(monkeypatch):
    monkeypatch.delenv("FROZEN_LOG_LEVEL", raising=False)
    monkeypatch.delenv("FROZEN_DEBUG", raising=False)
    assert get_log_level_from_env() == logging.INFO

    monkeypatch.setenv("FROZEN_DEBUG", "yes")
    assert get_log_level_from_env() == logging.DEBUG

    monkeypatch.setenv("FROZEN_LOG_LEVEL", "warning")
    assert get_log_level_from_env() == logging.WARNING


def test_serial_run_is_root():
    assert is_root_rank(None)


def test_setup_logging_quiets_nonroot_ranks():
    root = logging.getLogger()
    old_level = root.level
    handler = logging.StreamHandler()
    root.addHandler(handler)
    try:
        setup_logging(rank=1, level=logging.DEBUG)
        assert root.level == logging.DEBUG
        assert handler.level == logging.WARNING
        setup_logging(rank=0, level=logging.INFO)
        assert handler.level == logging.INFO
    finally:
        root.removeHandler(handler)
        root.setLevel(old_level)
