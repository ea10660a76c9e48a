"""
Cell/face mesh topology for the mixed (cell + face) finite-volume fields.

Builds a static vertical soil column and carries the face -> cell adjacency,
named cell sets (water-retention regions) and the sparse face-averaging
operator used to keep face values consistent with cell values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy import sparse

from .types import FloatArray, IntArray

logger = logging.getLogger(__name__)

DEFAULT_REGION = "computational domain"


@dataclass(slots=True)
class CellFaceMesh:
    """
    Local mesh partition.

    Attributes
    ----------
    n_cells_owned : int
        Owned cells; cells [n_cells_owned, n_cells_used) are ghosts.
    face_cells : list of tuple
        Adjacent (used) cell ids per face; one entry for boundary faces.
    n_faces_owned : int
        Faces [0, n_faces_owned) are owned and receive averaged values.
    cell_volumes : ndarray
        Cell volumes [m^3], length n_cells_used.
    cell_centroids : ndarray
        Cell centroids (n_cells_used, 3) [m].
    sets : dict
        Region name -> owned cell ids.
    """

    n_cells_owned: int
    face_cells: List[Tuple[int, ...]]
    cell_volumes: FloatArray
    cell_centroids: FloatArray
    n_faces_owned: Optional[int] = None
    sets: Dict[str, IntArray] = field(default_factory=dict)
    _face_avg: Optional[sparse.csr_matrix] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.cell_volumes = np.asarray(self.cell_volumes, dtype=np.float64).reshape(-1)
        self.cell_centroids = np.asarray(self.cell_centroids, dtype=np.float64)
        if self.cell_centroids.ndim == 1:
            self.cell_centroids = self.cell_centroids.reshape(-1, 1)
        n_used = self.cell_volumes.size
        if self.cell_centroids.shape[0] != n_used:
            raise ValueError(
                f"cell_centroids rows {self.cell_centroids.shape[0]} != cell_volumes size {n_used}"
            )
        if not (0 <= self.n_cells_owned <= n_used):
            raise ValueError(f"n_cells_owned={self.n_cells_owned} out of range [0, {n_used}]")
        if np.any(self.cell_volumes <= 0.0) or not np.all(np.isfinite(self.cell_volumes)):
            raise ValueError("cell_volumes must be positive and finite.")

        self.face_cells = [tuple(int(c) for c in cells) for cells in self.face_cells]
        for f, cells in enumerate(self.face_cells):
            if len(cells) not in (1, 2):
                raise ValueError(f"face {f} must border one or two cells, got {cells}")
            for c in cells:
                if not (0 <= c < n_used):
                    raise ValueError(f"face {f} references cell {c} outside [0, {n_used})")

        if self.n_faces_owned is None:
            self.n_faces_owned = len(self.face_cells)
        if not (0 <= self.n_faces_owned <= len(self.face_cells)):
            raise ValueError(f"n_faces_owned={self.n_faces_owned} out of range")

        sets: Dict[str, IntArray] = {}
        for name, cells in self.sets.items():
            ids = np.asarray(cells, dtype=np.int64).reshape(-1)
            if ids.size and (ids.min() < 0 or ids.max() >= self.n_cells_owned):
                raise ValueError(f"region '{name}' references cells outside the owned range")
            sets[str(name)] = ids
        self.sets = sets

    @property
    def n_cells_used(self) -> int:
        return int(self.cell_volumes.size)

    @property
    def n_faces(self) -> int:
        return len(self.face_cells)

    def face_get_cells(self, f: int) -> Tuple[int, ...]:
        return self.face_cells[f]

    def get_set_entities(self, name: str) -> IntArray:
        try:
            return self.sets[name]
        except KeyError:
            raise KeyError(f"Unknown region '{name}' (have {sorted(self.sets)})") from None

    def get_set_size(self, name: str) -> int:
        return int(self.get_set_entities(name).size)

    def face_average_operator(self) -> sparse.csr_matrix:
        """
        Sparse (n_faces_owned x n_cells_used) operator: equal weights over the
        cells adjacent to each owned face.
        """
        if self._face_avg is None:
            rows: List[int] = []
            cols: List[int] = []
            vals: List[float] = []
            for f in range(self.n_faces_owned):
                cells = self.face_cells[f]
                w = 1.0 / len(cells)
                for c in cells:
                    rows.append(f)
                    cols.append(c)
                    vals.append(w)
            self._face_avg = sparse.csr_matrix(
                (np.asarray(vals), (np.asarray(rows), np.asarray(cols))),
                shape=(self.n_faces_owned, self.n_cells_used),
            )
        return self._face_avg


def build_column_mesh(
    n_cells: int,
    dz: float | Sequence[float] = 0.1,
    *,
    z_bottom: float = 0.0,
    area: float = 1.0,
    sets: Optional[Mapping[str, Sequence[int]]] = None,
) -> CellFaceMesh:
    """
    Build a serial vertical column: cell 0 at the bottom, n_cells + 1 faces.

    Face 0 is the bottom boundary, face n_cells the top boundary; interior face
    k borders cells (k-1, k). Without explicit sets, every cell belongs to
    DEFAULT_REGION.
    """
    n_cells = int(n_cells)
    if n_cells <= 0:
        raise ValueError(f"n_cells must be positive, got {n_cells}")
    if not np.isfinite(area) or area <= 0.0:
        raise ValueError("area must be positive and finite.")

    widths = np.broadcast_to(np.asarray(dz, dtype=np.float64), (n_cells,)).copy()
    if np.any(widths <= 0.0) or not np.all(np.isfinite(widths)):
        raise ValueError("dz must be positive and finite.")

    nodes = float(z_bottom) + np.concatenate([[0.0], np.cumsum(widths)])
    z_c = 0.5 * (nodes[:-1] + nodes[1:])
    centroids = np.zeros((n_cells, 3), dtype=np.float64)
    centroids[:, 2] = z_c

    face_cells: List[Tuple[int, ...]] = [(0,)]
    face_cells.extend((k - 1, k) for k in range(1, n_cells))
    face_cells.append((n_cells - 1,))

    if sets is None:
        sets = {DEFAULT_REGION: np.arange(n_cells)}

    mesh = CellFaceMesh(
        n_cells_owned=n_cells,
        face_cells=face_cells,
        cell_volumes=widths * float(area),
        cell_centroids=centroids,
        sets=dict(sets),
    )
    logger.debug("Built column mesh: %d cells, %d faces, z=[%.3f, %.3f]", n_cells, mesh.n_faces, nodes[0], nodes[-1])
    return mesh


def build_column_partition(
    n_cells: int,
    dz: float | Sequence[float] = 0.1,
    *,
    rank: int = 0,
    size: int = 1,
    z_bottom: float = 0.0,
    area: float = 1.0,
    sets: Optional[Mapping[str, Sequence[int]]] = None,
) -> Tuple[CellFaceMesh, IntArray]:
    """
    Contiguous block partition of the column for one rank.

    Rank r owns global cells [lo, hi), numbered first, followed by the ghost
    below (lo - 1) and the ghost above (hi) where they exist. Owned faces are
    the global faces [lo, hi) plus the top boundary on the last rank; the
    shared face hi is kept as a non-owned trailing face. sets hold global
    cell ids and are restricted to the owned block.

    Returns (mesh, ghost_global_ids) with ghosts in local order.
    """
    full = build_column_mesh(n_cells, dz, z_bottom=z_bottom, area=area)
    n = full.n_cells_owned
    rank, size = int(rank), int(size)
    if size < 1 or not (0 <= rank < size):
        raise ValueError(f"invalid rank/size {rank}/{size}")
    if size > n:
        raise ValueError(f"cannot split {n} cells over {size} ranks")

    counts = [n // size + (1 if r < n % size else 0) for r in range(size)]
    lo = sum(counts[:rank])
    hi = lo + counts[rank]

    ghosts: List[int] = []
    if lo > 0:
        ghosts.append(lo - 1)
    if hi < n:
        ghosts.append(hi)
    used = np.concatenate([np.arange(lo, hi), np.asarray(ghosts, dtype=np.int64)]).astype(np.int64)
    local = {int(g): i for i, g in enumerate(used)}

    owned_faces = list(range(lo, hi)) + ([n] if hi == n else [])
    shared_faces = [hi] if hi < n else []
    face_cells = [tuple(local[c] for c in full.face_cells[f]) for f in owned_faces + shared_faces]

    if sets is None:
        sets = {DEFAULT_REGION: np.arange(n)}
    local_sets = {}
    for name, cells in sets.items():
        ids = np.asarray(cells, dtype=np.int64).reshape(-1)
        local_sets[name] = ids[(ids >= lo) & (ids < hi)] - lo

    mesh = CellFaceMesh(
        n_cells_owned=hi - lo,
        face_cells=face_cells,
        cell_volumes=full.cell_volumes[used],
        cell_centroids=full.cell_centroids[used],
        n_faces_owned=len(owned_faces),
        sets=local_sets,
    )
    logger.debug("Rank %d/%d owns cells [%d, %d) with ghosts %s", rank, size, lo, hi, ghosts)
    return mesh, np.asarray(ghosts, dtype=np.int64)
