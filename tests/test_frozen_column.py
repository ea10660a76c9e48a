"""
Frozen reference column lookup and store initialization.
"""

from __future__ import annotations

import numpy as np
import pytest

from core.fields import CompositeField, FieldStore
from core.mesh import build_column_mesh
from physics.frozen_column import FrozenColumnRangeError, frozen_column_profile, initialize_from_frozen_column
from physics.frozen_column_data import DZ, REF_PRESSURE, REF_TEMPERATURE, WATER_TABLE_INDEX


def test_table_layout():
    assert REF_TEMPERATURE.shape == (100,)
    assert REF_PRESSURE.shape == (100,)
    assert DZ == 0.1
    assert WATER_TABLE_INDEX == 53


def test_profile_at_water_table_is_table_point():
    T, p = frozen_column_profile(np.array([2.0]), 2.0)
    assert T[0] == REF_TEMPERATURE[WATER_TABLE_INDEX]
    assert p[0] == REF_PRESSURE[WATER_TABLE_INDEX]


def test_profile_interpolates_linearly():
    z_table = (np.arange(REF_TEMPERATURE.size) - WATER_TABLE_INDEX) * DZ
    z = np.array([-1.23, -0.05, 0.0, 0.37, 2.5])
    T, p = frozen_column_profile(z, 0.0)
    np.testing.assert_allclose(T, np.interp(z, z_table, REF_TEMPERATURE), rtol=1e-12)
    np.testing.assert_allclose(p, np.interp(z, z_table, REF_PRESSURE), rtol=1e-12)


def test_profile_midpoint():
    T, _ = frozen_column_profile(np.array([0.05]), 0.0)
    k = WATER_TABLE_INDEX
    assert T[0] == pytest.approx(0.5 * (REF_TEMPERATURE[k] + REF_TEMPERATURE[k + 1]), rel=1e-12)


@pytest.mark.parametrize("z", [-5.4, 4.7, 100.0])
def test_off_the_charts(z):
    with pytest.raises(FrozenColumnRangeError, match="off the charts"):
        frozen_column_profile(np.array([0.0, z]), 0.0)


def test_initialize_store_cells_and_faces():
    mesh = build_column_mesh(3, 0.1, z_bottom=-0.3)
    store = FieldStore(mesh)
    store.set_field("temperature", CompositeField.zeros_like_mesh(mesh))
    store.set_field("pressure", CompositeField.zeros_like_mesh(mesh))

    initialize_from_frozen_column(store, 0.0)

    T_ref, p_ref = frozen_column_profile(mesh.cell_centroids[:, 2], 0.0)
    T = store.get_field("temperature")
    p = store.get_field("pressure")
    np.testing.assert_allclose(T.view("cell"), T_ref)
    np.testing.assert_allclose(p.view("cell"), p_ref)
    np.testing.assert_allclose(T.view("face")[[0, 3]], T_ref[[0, 2]])
    np.testing.assert_allclose(p.view("face")[1], 0.5 * (p_ref[0] + p_ref[1]))
