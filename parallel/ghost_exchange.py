"""
Owned -> ghost scatter for cell-centered values.

Each local array stores owned entries first followed by ghost entries. The
exchange overwrites ghost entries in place with the owner's current values;
it is collective and blocking in the PETSc variant.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from core.types import FloatArray

logger = logging.getLogger(__name__)


class SerialGhostExchange:
    """Single-process partitions carry no ghosts; the scatter is a no-op."""

    def scatter_master_to_ghosted(self, values: FloatArray, n_owned: int) -> None:
        if values.size != n_owned:
            raise ValueError(
                f"serial exchange expects no ghost entries, got {values.size - n_owned} "
                f"(size={values.size}, owned={n_owned})"
            )


class PetscGhostExchange:
    """
    Ghost scatter through a PETSc ghosted Vec.

    ghosts are the global indices of the local ghost entries, in local order.
    """

    def __init__(self, n_owned: int, ghosts: Sequence[int], comm=None) -> None:
        from parallel.mpi_bootstrap import bootstrap_mpi_before_petsc

        bootstrap_mpi_before_petsc()
        from petsc4py import PETSc

        self._PETSc = PETSc
        self.n_owned = int(n_owned)
        self.n_ghost = len(ghosts)
        ghost_idx = np.asarray(ghosts, dtype=PETSc.IntType)
        self._vec = PETSc.Vec().createGhost(
            ghost_idx,
            size=(self.n_owned, PETSc.DECIDE),
            comm=comm if comm is not None else PETSc.COMM_WORLD,
        )
        logger.debug("PETSc ghost exchange: owned=%d ghosts=%d", self.n_owned, self.n_ghost)

    def scatter_master_to_ghosted(self, values: FloatArray, n_owned: int) -> None:
        if int(n_owned) != self.n_owned or values.size != self.n_owned + self.n_ghost:
            raise ValueError(
                f"array layout (size={values.size}, owned={n_owned}) does not match exchange "
                f"(owned={self.n_owned}, ghosts={self.n_ghost})"
            )
        PETSc = self._PETSc
        self._vec.setArray(values[: self.n_owned])
        self._vec.ghostUpdate(addv=PETSc.InsertMode.INSERT_VALUES, mode=PETSc.ScatterMode.FORWARD)
        with self._vec.localForm() as local:
            values[self.n_owned :] = local.getArray(readonly=True)[self.n_owned :]
