"""
van Genuchten water-retention curves, region pairing and the saturation evaluator.
"""

from __future__ import annotations

import numpy as np
import pytest

from core.fields import CompositeField, FieldStore
from core.mesh import build_column_mesh
from properties.wrm import WRMEvaluator, WRMRegionList, WRMVanGenuchten


# ============================================================================
# Curves
# ============================================================================


@pytest.mark.parametrize("sr", [0.0, 0.1])
def test_capillary_pressure_inverts_saturation(sr):
    wrm = WRMVanGenuchten(alpha=2.0e-4, n=1.8, sr=sr)
    pc = np.array([10.0, 1.0e3, 5.0e4, 1.0e6])
    s = wrm.saturation(pc)
    np.testing.assert_allclose(wrm.capillary_pressure(s), pc, rtol=1e-8)


def test_saturated_limits():
    wrm = WRMVanGenuchten(alpha=1.0e-4, n=2.0)
    assert wrm.capillary_pressure(1.0) == 0.0
    assert wrm.saturation(0.0) == 1.0
    assert wrm.saturation(-500.0) == 1.0
    # above full saturation clips to pc = 0
    assert wrm.capillary_pressure(1.3) == 0.0


def test_dry_limit_is_finite_and_large():
    wrm = WRMVanGenuchten(alpha=1.0e-4, n=2.0, sr=0.05)
    pc = wrm.capillary_pressure(0.05)
    assert np.isfinite(pc)
    assert pc > 1.0e20


def test_scalar_and_array_outputs():
    wrm = WRMVanGenuchten(alpha=1.0e-4, n=2.0)
    assert isinstance(wrm.capillary_pressure(0.5), float)
    assert wrm.capillary_pressure(np.array([0.5, 0.6])).shape == (2,)


@pytest.mark.parametrize(
    "kwargs",
    [dict(alpha=0.0, n=2.0), dict(alpha=1e-4, n=1.0), dict(alpha=1e-4, n=2.0, sr=1.0)],
)
def test_invalid_parameters(kwargs):
    with pytest.raises(ValueError):
        WRMVanGenuchten(**kwargs)


def test_region_list_rejects_duplicates():
    wrm = WRMVanGenuchten(alpha=1.0e-4, n=2.0)
    wrms = WRMRegionList([("peat", wrm)])
    wrms.add("mineral", wrm)
    assert wrms.region_names() == ("peat", "mineral")
    assert len(wrms) == 2
    with pytest.raises(ValueError, match="already"):
        wrms.add("peat", wrm)


# ============================================================================
# Evaluator
# ============================================================================


def test_evaluator_tracks_pressure_changes():
    mesh = build_column_mesh(3, 0.1, sets={"top": [2], "bottom": [0, 1]})
    store = FieldStore(mesh)
    store.set_scalar("atmospheric_pressure", 101325.0)
    store.set_field("pressure", CompositeField({"cell": [101325.0, 90000.0, 80000.0]}))

    wet = WRMVanGenuchten(alpha=1.0e-4, n=2.0)
    dry = WRMVanGenuchten(alpha=5.0e-4, n=1.5)
    ev = WRMEvaluator(WRMRegionList([("bottom", wet), ("top", dry)]))
    store.register_evaluator(ev)

    assert ev.provides_region_capillary_curves()
    assert store.recompute("saturation_liquid", "flow")
    sat = store.get_field("saturation_liquid").view("cell")
    assert sat[0] == 1.0
    assert sat[1] == pytest.approx(wet.saturation(11325.0))
    assert sat[2] == pytest.approx(dry.saturation(21325.0))

    assert not store.recompute("saturation_liquid", "flow")
    # another requester sees the field as new
    assert store.recompute("saturation_liquid", "energy")

    store.get_field("pressure").view("cell")[1] = 70000.0
    store.mark_changed("pressure")
    assert store.recompute("saturation_liquid", "flow")
    assert store.get_field("saturation_liquid").view("cell")[1] == pytest.approx(wet.saturation(31325.0))
