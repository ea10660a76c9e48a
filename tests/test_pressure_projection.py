"""
Mass-consistent pressure projection.

Tests:
1. saturation_star closure (with and without ice expansion term)
2. Projection restores conserved water content at changed cells
3. Non-physical s* leaves the guess untouched
4. Cell selection: changed mask and region membership
5. Fail-fast: singular closure (no partial writes), missing capillary-pressure curves
6. Per-cell debug record
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from core.fields import NEXT, PREVIOUS, CompositeField, FieldStore, FunctionEvaluator
from core.mesh import DEFAULT_REGION, build_column_mesh
from core.types import ProjectionConfig
from physics.pressure_projection import (
    MassConsistentPressureProjector,
    PressureProjectionError,
    SingularProjectionError,
    saturation_star,
)
from properties.wrm import WRMEvaluator, WRMRegionList, WRMVanGenuchten

P_ATM = 101325.0
VG = WRMVanGenuchten(alpha=1.0e-4, n=2.0)


def _cells(n, value):
    return CompositeField({"cell": np.full(n, value, dtype=np.float64)})


def _make_store(
    n: int = 3,
    *,
    sets=None,
    wc_specific: float,
    phi: float = 0.5,
    n_g: float = 0.0,
    omega_g: float = 0.0,
    n_l: float = 55000.0,
    n_i: float = 50000.0,
    one_on_A: float = 1.0,
    region: str = DEFAULT_REGION,
):
    """Column store with uniform auxiliary state; wc_specific is wc0 / cv."""
    mesh = build_column_mesh(n, 0.1, sets=sets)
    store = FieldStore(mesh)
    cv = mesh.cell_volumes
    store.set_field("cell_volume", CompositeField({"cell": cv}), PREVIOUS)
    store.set_field("water_content", CompositeField({"cell": wc_specific * cv}), PREVIOUS)
    store.set_field("porosity", _cells(n, phi))
    store.set_field("molar_density_gas", _cells(n, n_g))
    store.set_field("mol_frac_gas", _cells(n, omega_g))
    store.set_field("molar_density_liquid", _cells(n, n_l))
    store.set_field("molar_density_ice", _cells(n, n_i))
    store.set_field("wrm_permafrost_one_on_A", _cells(n, one_on_A))
    store.set_scalar("atmospheric_pressure", P_ATM)
    store.register_evaluator(WRMEvaluator(WRMRegionList([(region, VG)])))
    return store


# ============================================================================
# Test 1: closure
# ============================================================================


def test_saturation_star_unfrozen_closure():
    one = np.ones(1)
    s = saturation_star(0.5 * 55000.0 * 0.8 * one, 0.5 * one, 0 * one, 0 * one, 55000.0 * one, 5.0e4 * one, one)
    assert s[0] == pytest.approx(0.8, rel=1e-14)


def test_saturation_star_with_ice_term():
    one = np.ones(1)
    s = saturation_star(
        20000.0 * one, 0.5 * one, 0 * one, 0 * one, 55000.0 * one, 50000.0 * one, 0.5 * one
    )
    # A - 1 = 1: den = 0.5 * (55000 + 50000) - 20000
    assert s[0] == pytest.approx(20000.0 / 32500.0, rel=1e-14)


def test_saturation_star_vapor_term():
    one = np.ones(1)
    s = saturation_star(1000.2 * one, 0.5 * one, 40.0 * one, 0.01 * one, 55000.0 * one, 5.0e4 * one, one)
    # (1000.2 - 0.2) / (0.5 * (55000 - 0.4))
    assert s[0] == pytest.approx(1000.0 / 27499.8, rel=1e-14)


# ============================================================================
# Test 2: projection
# ============================================================================


def test_projection_recovers_pressure_from_water_content():
    store = _make_store(wc_specific=0.5 * 55000.0 * 0.8)
    pressure = np.full(3, 95000.0)

    stats = MassConsistentPressureProjector().project(store, pressure)

    expected = P_ATM - VG.capillary_pressure(0.8)
    np.testing.assert_allclose(pressure, expected, rtol=1e-12)
    assert stats.n_candidates == 3
    assert stats.n_projected == 3
    assert stats.n_nonphysical == 0
    # pressure maps back to the conserved saturation
    np.testing.assert_allclose(VG.saturation(P_ATM - pressure), 0.8, rtol=1e-10)


def test_projection_uses_configured_keys():
    store = _make_store(wc_specific=0.5 * 55000.0 * 0.6)
    store.set_field("phi_alt", _cells(3, 0.5))
    cfg = ProjectionConfig(porosity_key="phi_alt")
    pressure = np.zeros(3)
    MassConsistentPressureProjector(cfg).project(store, pressure)
    np.testing.assert_allclose(pressure, P_ATM - VG.capillary_pressure(0.6), rtol=1e-12)


# ============================================================================
# Test 3: non-physical s*
# ============================================================================


def test_nonpositive_saturation_leaves_guess():
    # wc below the vapor contribution n_g * omega_g * phi = 0.2
    store = _make_store(wc_specific=0.1, n_g=40.0, omega_g=0.01)
    pressure = np.array([90000.0, 91000.0, 92000.0])

    stats = MassConsistentPressureProjector().project(store, pressure)

    np.testing.assert_array_equal(pressure, [90000.0, 91000.0, 92000.0])
    assert stats.n_projected == 0
    assert stats.n_nonphysical == 3


# ============================================================================
# Test 4: cell selection
# ============================================================================


def test_only_changed_cells_projected():
    store = _make_store(wc_specific=0.5 * 55000.0 * 0.8)
    pressure = np.full(3, 95000.0)
    changed = np.array([False, True, False])

    stats = MassConsistentPressureProjector().project(store, pressure, changed=changed)

    assert pressure[0] == 95000.0
    assert pressure[2] == 95000.0
    assert pressure[1] == pytest.approx(P_ATM - VG.capillary_pressure(0.8), rel=1e-12)
    assert stats.n_candidates == 1


def test_cells_outside_regions_untouched():
    store = _make_store(wc_specific=0.5 * 55000.0 * 0.8, sets={"upper": [1, 2]}, region="upper")
    pressure = np.full(3, 95000.0)

    MassConsistentPressureProjector().project(store, pressure)

    assert pressure[0] == 95000.0
    np.testing.assert_allclose(pressure[1:], P_ATM - VG.capillary_pressure(0.8), rtol=1e-12)


def test_no_changed_cells_is_noop():
    store = _make_store(wc_specific=0.5 * 55000.0 * 0.8)
    pressure = np.full(3, 95000.0)
    stats = MassConsistentPressureProjector().project(store, pressure, changed=np.zeros(3, dtype=bool))
    np.testing.assert_array_equal(pressure, 95000.0)
    assert stats.n_candidates == 0


# ============================================================================
# Test 5: failures
# ============================================================================


def test_singular_denominator_raises():
    # phi = 0 and A = 1 make the denominator vanish
    store = _make_store(wc_specific=1.0, phi=0.0)
    pressure = np.full(3, 95000.0)
    with pytest.raises(SingularProjectionError, match="Singular"):
        MassConsistentPressureProjector().project(store, pressure)
    np.testing.assert_array_equal(pressure, 95000.0)


def test_denominator_tolerance():
    store = _make_store(wc_specific=1.0, phi=1.0e-6)
    pressure = np.full(3, 95000.0)
    MassConsistentPressureProjector().project(store, pressure.copy())
    with pytest.raises(SingularProjectionError):
        MassConsistentPressureProjector(ProjectionConfig(denominator_tol=1.0)).project(store, pressure)


def test_evaluator_without_curves_rejected():
    mesh = build_column_mesh(2, 0.1)
    store = FieldStore(mesh)
    store.register_evaluator(FunctionEvaluator("saturation_liquid", lambda s: _cells(2, 1.0)))
    with pytest.raises(PressureProjectionError, match="capillary-pressure curves"):
        MassConsistentPressureProjector().project(store, np.zeros(2))


def test_singular_error_is_projection_error():
    assert issubclass(SingularProjectionError, PressureProjectionError)


def test_singular_region_leaves_all_regions_untouched():
    mesh = build_column_mesh(2, 0.1, sets={"a": [0], "b": [1]})
    store = FieldStore(mesh)
    cv = mesh.cell_volumes
    store.set_field("cell_volume", CompositeField({"cell": cv}), PREVIOUS)
    store.set_field("water_content", CompositeField({"cell": 0.5 * 55000.0 * 0.8 * cv}), PREVIOUS)
    store.set_field("porosity", CompositeField({"cell": [0.5, 0.0]}))
    store.set_field("molar_density_gas", _cells(2, 0.0))
    store.set_field("mol_frac_gas", _cells(2, 0.0))
    store.set_field("molar_density_liquid", _cells(2, 55000.0))
    store.set_field("molar_density_ice", _cells(2, 50000.0))
    store.set_field("wrm_permafrost_one_on_A", _cells(2, 1.0))
    store.set_scalar("atmospheric_pressure", P_ATM)
    store.register_evaluator(WRMEvaluator(WRMRegionList([("a", VG), ("b", VG)])))
    pressure = np.full(2, 95000.0)

    with pytest.raises(SingularProjectionError, match=r"first cells \[1\]"):
        MassConsistentPressureProjector().project(store, pressure)

    np.testing.assert_array_equal(pressure, [95000.0, 95000.0])


# ============================================================================
# Test 6: per-cell debug record
# ============================================================================


def test_debug_record_labels_each_value(caplog):
    store = _make_store(1, wc_specific=0.5 * 55000.0 * 0.8)
    pressure = np.full(1, 95000.0)
    expected = P_ATM - VG.capillary_pressure(0.8)

    with caplog.at_level(logging.DEBUG, logger="physics.pressure_projection"):
        MassConsistentPressureProjector().project(store, pressure)

    record = next(
        r for r in caplog.records if r.name == "physics.pressure_projection" and r.levelno == logging.DEBUG
    )
    assert record.getMessage() == (
        f"Region '{DEFAULT_REGION}' cell 0: s*={0.8:.6g} p_guess={95000.0:.6g} p_corrected={expected:.6g}"
    )
