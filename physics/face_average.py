"""
Face values from cell values for the mixed cell/face discretization.

Interior faces take the mean of their two cells; boundary faces copy their
single cell. Ghost cell values must be current, so averaging always runs
inside a publish-then-read scope on the field store.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Sequence

from core.fields import NEXT, CompositeField, FieldStore

logger = logging.getLogger(__name__)


def average_cells_to_faces(mesh, field: CompositeField) -> None:
    """Overwrite owned face values of field from its (ghosted) cell values."""
    op = mesh.face_average_operator()
    cells = field.view("cell")
    if cells.size != mesh.n_cells_used:
        raise ValueError(f"cell component size {cells.size} != mesh cells {mesh.n_cells_used}")
    faces = field.view("face")
    faces[: mesh.n_faces_owned] = op @ cells


@contextmanager
def published_cells(store: FieldStore, names: Sequence[str], snapshot: str = NEXT) -> Iterator[Dict[str, CompositeField]]:
    """Scatter owned cell values of names to ghosts, then yield the fields."""
    for name in names:
        store.publish_to_ghosts(name, "cell", snapshot)
    yield {name: store.get_field(name, snapshot) for name in names}


class FaceAverager:
    """Resync face values of named store fields after cell corrections."""

    def __init__(self, store: FieldStore) -> None:
        self.store = store

    def update_faces(self, names: Sequence[str], snapshot: str = NEXT) -> None:
        with published_cells(self.store, names, snapshot) as fields:
            for name, field in fields.items():
                average_cells_to_faces(self.store.mesh, field)
                self.store.mark_changed(name, snapshot)
        logger.debug("Face values averaged from cells for %s", list(names))
