"""
Initialization of temperature and pressure from the frozen reference column.
"""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from core.fields import NEXT, FieldStore
from core.types import FloatArray
from physics.face_average import FaceAverager
from physics.frozen_column_data import DZ, REF_PRESSURE, REF_TEMPERATURE, WATER_TABLE_INDEX

logger = logging.getLogger(__name__)


class FrozenColumnRangeError(RuntimeError):
    """A cell lies outside the tabulated reference column."""


def frozen_column_profile(z: FloatArray, water_table_height: float) -> Tuple[FloatArray, FloatArray]:
    """
    Reference (T, p) at elevations z by linear interpolation between the two
    bracketing table points.
    """
    z = np.asarray(z, dtype=np.float64)
    z_over_wt = z - float(water_table_height)
    dk = np.floor(z_over_wt / DZ).astype(np.int64)
    k = dk + WATER_TABLE_INDEX

    n_points = REF_TEMPERATURE.size
    off = (k < 0) | (k > n_points - 2)
    if np.any(off):
        first = int(np.flatnonzero(off)[0])
        raise FrozenColumnRangeError(
            f"Initialization of frozen column is off the charts: z={z[first]:.4f} "
            f"(water table {water_table_height}) maps to table index {int(k[first])}, "
            f"valid range [0, {n_points - 2}]"
        )

    param = (z_over_wt - DZ * dk) / DZ
    # deliberately not T[k]*param + T[k+1]*(1-param): param = 0 must reproduce table point k
    T = REF_TEMPERATURE[k] * (1.0 - param) + REF_TEMPERATURE[k + 1] * param
    p = REF_PRESSURE[k] * (1.0 - param) + REF_PRESSURE[k + 1] * param
    return T, p


def initialize_from_frozen_column(
    store: FieldStore,
    water_table_height: float,
    *,
    temperature_key: str = "temperature",
    pressure_key: str = "pressure",
    snapshot: str = NEXT,
) -> None:
    """Overwrite owned cell values of temperature/pressure, then resync faces."""
    mesh = store.mesh
    n = mesh.n_cells_owned
    T, p = frozen_column_profile(mesh.cell_centroids[:n, -1], water_table_height)

    store.get_field(temperature_key, snapshot).view("cell")[:n] = T
    store.get_field(pressure_key, snapshot).view("cell")[:n] = p
    FaceAverager(store).update_faces((temperature_key, pressure_key), snapshot)
    logger.info(
        "Initialized %d cells from frozen column (water table %.3f m): T=[%.3f, %.3f] K",
        n,
        water_table_height,
        float(T.min()) if n else float("nan"),
        float(T.max()) if n else float("nan"),
    )
