"""
Composite field containers, field storage and dependency-tracked evaluators.

- CompositeField: named numpy components ("cell", "face") over one mesh; the
  first n_owned entries of each component are owned, the rest are ghosts.
- BlockVector: named CompositeField sub-vectors ("flow", "energy").
- FieldStore: two time-indexed snapshots ("previous", "next") keyed by name,
  scalar data, evaluator registry and the ghost-exchange seam.

Arithmetic follows the update convention self = alpha*x + beta*self. Norms
only see owned entries and are reduced across processes when a comm is given.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np

from core.types import FloatArray
from parallel.collectives import global_max, global_sum

logger = logging.getLogger(__name__)

PREVIOUS = "previous"
NEXT = "next"
SNAPSHOTS = (PREVIOUS, NEXT)


class CompositeField:
    """Cell/face valued field with owned + ghost storage per component."""

    __slots__ = ("components", "owned")

    def __init__(
        self,
        components: Mapping[str, Any],
        owned: Optional[Mapping[str, int]] = None,
    ) -> None:
        self.components: Dict[str, FloatArray] = {
            name: np.array(values, dtype=np.float64, copy=True).reshape(-1)
            for name, values in components.items()
        }
        owned = dict(owned or {})
        unknown = set(owned) - set(self.components)
        if unknown:
            raise ValueError(f"owned counts given for unknown components {sorted(unknown)}")
        self.owned: Dict[str, int] = {}
        for name, arr in self.components.items():
            n = int(owned.get(name, arr.size))
            if n < 0 or n > arr.size:
                raise ValueError(f"owned count {n} out of range for component '{name}' of size {arr.size}")
            self.owned[name] = n

    @classmethod
    def zeros_like_mesh(cls, mesh, *, with_faces: bool = True, value: float = 0.0) -> "CompositeField":
        comps = {"cell": np.full(mesh.n_cells_used, value, dtype=np.float64)}
        owned = {"cell": mesh.n_cells_owned}
        if with_faces:
            comps["face"] = np.full(mesh.n_faces, value, dtype=np.float64)
            owned["face"] = mesh.n_faces_owned
        return cls(comps, owned)

    # -- access -------------------------------------------------------------
    def names(self) -> Tuple[str, ...]:
        return tuple(self.components.keys())

    def has_component(self, name: str) -> bool:
        return name in self.components

    def view(self, name: str) -> FloatArray:
        try:
            return self.components[name]
        except KeyError:
            raise KeyError(f"component '{name}' not present (have {self.names()})") from None

    def view_owned(self, name: str) -> FloatArray:
        return self.view(name)[: self.owned[name]]

    def __getitem__(self, key: Tuple[str, int]) -> float:
        name, i = key
        return float(self.view(name)[i])

    def __setitem__(self, key: Tuple[str, int], value: float) -> None:
        name, i = key
        self.view(name)[i] = value

    # -- arithmetic ---------------------------------------------------------
    def copy(self) -> "CompositeField":
        return CompositeField(self.components, self.owned)

    def _check_compatible(self, other: "CompositeField") -> None:
        if self.names() != other.names():
            raise ValueError(f"incompatible components {self.names()} vs {other.names()}")
        for name in self.names():
            if self.components[name].shape != other.components[name].shape:
                raise ValueError(
                    f"component '{name}' shape mismatch {self.components[name].shape} vs "
                    f"{other.components[name].shape}"
                )

    def assign(self, other: "CompositeField") -> "CompositeField":
        self._check_compatible(other)
        for name, arr in self.components.items():
            arr[:] = other.components[name]
        return self

    def put_scalar(self, value: float) -> "CompositeField":
        for arr in self.components.values():
            arr.fill(value)
        return self

    def scale(self, alpha: float) -> "CompositeField":
        for arr in self.components.values():
            arr *= alpha
        return self

    def update(self, alpha: float, x: "CompositeField", beta: float) -> "CompositeField":
        """self = alpha*x + beta*self"""
        self._check_compatible(x)
        for name, arr in self.components.items():
            arr *= beta
            arr += alpha * x.components[name]
        return self

    def local_sum_squares(self) -> float:
        return float(sum(np.dot(self.view_owned(n), self.view_owned(n)) for n in self.names()))

    def local_max_abs(self) -> float:
        vals = [float(np.max(np.abs(self.view_owned(n)))) for n in self.names() if self.owned[n] > 0]
        return max(vals) if vals else 0.0

    def norm2(self, comm=None) -> float:
        return float(np.sqrt(global_sum(self.local_sum_squares(), comm)))

    def norm_inf(self, comm=None) -> float:
        return float(global_max(self.local_max_abs(), comm))

    def __repr__(self) -> str:
        shapes = ", ".join(f"{n}={a.size}" for n, a in self.components.items())
        return f"CompositeField({shapes})"


class BlockVector:
    """Ordered collection of named CompositeField sub-vectors."""

    __slots__ = ("subvectors",)

    def __init__(self, subvectors: Mapping[str, CompositeField]) -> None:
        self.subvectors: Dict[str, CompositeField] = dict(subvectors)

    def sub(self, name: str) -> CompositeField:
        try:
            return self.subvectors[name]
        except KeyError:
            raise KeyError(f"sub-vector '{name}' not present (have {tuple(self.subvectors)})") from None

    def __iter__(self) -> Iterator[Tuple[str, CompositeField]]:
        return iter(self.subvectors.items())

    def copy(self) -> "BlockVector":
        return BlockVector({name: v.copy() for name, v in self.subvectors.items()})

    def _check_compatible(self, other: "BlockVector") -> None:
        if tuple(self.subvectors) != tuple(other.subvectors):
            raise ValueError(f"incompatible sub-vectors {tuple(self.subvectors)} vs {tuple(other.subvectors)}")

    def assign(self, other: "BlockVector") -> "BlockVector":
        self._check_compatible(other)
        for name, v in self.subvectors.items():
            v.assign(other.subvectors[name])
        return self

    def put_scalar(self, value: float) -> "BlockVector":
        for v in self.subvectors.values():
            v.put_scalar(value)
        return self

    def scale(self, alpha: float) -> "BlockVector":
        for v in self.subvectors.values():
            v.scale(alpha)
        return self

    def update(self, alpha: float, x: "BlockVector", beta: float) -> "BlockVector":
        self._check_compatible(x)
        for name, v in self.subvectors.items():
            v.update(alpha, x.subvectors[name], beta)
        return self

    def local_sum_squares(self) -> float:
        return float(sum(v.local_sum_squares() for v in self.subvectors.values()))

    def local_max_abs(self) -> float:
        return max((v.local_max_abs() for v in self.subvectors.values()), default=0.0)

    def norm2(self, comm=None) -> float:
        return float(np.sqrt(global_sum(self.local_sum_squares(), comm)))

    def norm_inf(self, comm=None) -> float:
        return float(global_max(self.local_max_abs(), comm))

    def __repr__(self) -> str:
        return f"BlockVector({', '.join(f'{n}: {v!r}' for n, v in self.subvectors.items())})"


class FieldEvaluator:
    """
    Dependency-tracked producer of one derived field in the "next" snapshot.

    has_field_changed() recomputes when any dependency version moved since the
    last evaluation and reports, per requester, whether the field changed since
    that requester last asked.
    """

    def __init__(self, key: str, dependencies: Sequence[str] = ()) -> None:
        self.key = str(key)
        self.dependencies: Tuple[str, ...] = tuple(dependencies)
        self._computed_at: Optional[Tuple[int, ...]] = None
        self._reported: Dict[str, int] = {}

    def evaluate(self, store: "FieldStore") -> CompositeField:
        raise NotImplementedError

    def provides_region_capillary_curves(self) -> bool:
        return False

    def get_wrms(self):
        raise TypeError(f"evaluator '{self.key}' does not provide region capillary-pressure curves")

    def has_field_changed(self, store: "FieldStore", requester: str) -> bool:
        for name in self.dependencies:
            if store.has_evaluator(name):
                store.recompute(name, self.key)
        deps = tuple(store.version(name) for name in self.dependencies)
        if self._computed_at != deps or not store.has_field(self.key):
            store.set_field(self.key, self.evaluate(store))
            self._computed_at = deps
            logger.debug("Recomputed field '%s' for requester '%s'", self.key, requester)
        version = store.version(self.key)
        changed = self._reported.get(requester) != version
        self._reported[requester] = version
        return changed


class FunctionEvaluator(FieldEvaluator):
    """Evaluator backed by a plain function of the store."""

    def __init__(
        self,
        key: str,
        func: Callable[["FieldStore"], CompositeField],
        dependencies: Sequence[str] = (),
    ) -> None:
        super().__init__(key, dependencies)
        self._func = func

    def evaluate(self, store: "FieldStore") -> CompositeField:
        return self._func(store)


class FieldStore:
    """
    Name-keyed field storage with "previous" and "next" snapshots.

    set_field stores the given object (no copy); callers that hand in a
    solver-owned vector see later mutations reflected in the store.
    """

    def __init__(self, mesh, *, ghost_exchange=None, comm=None) -> None:
        from parallel.ghost_exchange import SerialGhostExchange

        self.mesh = mesh
        self.comm = comm
        self.ghost_exchange = ghost_exchange if ghost_exchange is not None else SerialGhostExchange()
        self._fields: Dict[str, Dict[str, CompositeField]] = {s: {} for s in SNAPSHOTS}
        self._scalars: Dict[str, Dict[str, float]] = {s: {} for s in SNAPSHOTS}
        self._versions: Dict[Tuple[str, str], int] = {}
        self._times: Dict[str, float] = {PREVIOUS: 0.0, NEXT: 0.0}
        self._evaluators: Dict[str, FieldEvaluator] = {}

    @staticmethod
    def _check_snapshot(snapshot: str) -> str:
        if snapshot not in SNAPSHOTS:
            raise ValueError(f"Unknown snapshot {snapshot!r}; expected one of {SNAPSHOTS}")
        return snapshot

    # -- fields -------------------------------------------------------------
    def has_field(self, name: str, snapshot: str = NEXT) -> bool:
        return name in self._fields[self._check_snapshot(snapshot)]

    def get_field(self, name: str, snapshot: str = NEXT) -> CompositeField:
        fields = self._fields[self._check_snapshot(snapshot)]
        if name not in fields:
            raise KeyError(f"Field '{name}' not found in snapshot '{snapshot}'")
        return fields[name]

    def set_field(self, name: str, value: CompositeField, snapshot: str = NEXT) -> None:
        self._fields[self._check_snapshot(snapshot)][name] = value
        self.mark_changed(name, snapshot)

    def mark_changed(self, name: str, snapshot: str = NEXT) -> None:
        key = (self._check_snapshot(snapshot), name)
        self._versions[key] = self._versions.get(key, 0) + 1

    def version(self, name: str, snapshot: str = NEXT) -> int:
        return self._versions.get((self._check_snapshot(snapshot), name), 0)

    # -- scalars / time -----------------------------------------------------
    def get_scalar(self, name: str, snapshot: str = NEXT) -> float:
        scalars = self._scalars[self._check_snapshot(snapshot)]
        if name not in scalars:
            raise KeyError(f"Scalar '{name}' not found in snapshot '{snapshot}'")
        return scalars[name]

    def set_scalar(self, name: str, value: float, snapshot: str = NEXT) -> None:
        self._scalars[self._check_snapshot(snapshot)][name] = float(value)

    def time(self, snapshot: str = NEXT) -> float:
        return self._times[self._check_snapshot(snapshot)]

    def set_time(self, t: float, snapshot: str = NEXT) -> None:
        self._times[self._check_snapshot(snapshot)] = float(t)

    # -- evaluators ---------------------------------------------------------
    def register_evaluator(self, evaluator: FieldEvaluator) -> None:
        if evaluator.key in self._evaluators:
            raise ValueError(f"Evaluator for '{evaluator.key}' already registered")
        self._evaluators[evaluator.key] = evaluator

    def has_evaluator(self, name: str) -> bool:
        return name in self._evaluators

    def get_evaluator(self, name: str) -> FieldEvaluator:
        try:
            return self._evaluators[name]
        except KeyError:
            raise KeyError(f"No evaluator registered for '{name}'") from None

    def recompute(self, name: str, requester: str) -> bool:
        """Force an up-to-date value of a derived field; True if it changed for requester."""
        return self.get_evaluator(name).has_field_changed(self, requester)

    # -- communication ------------------------------------------------------
    def publish_to_ghosts(self, name: str, component: str = "cell", snapshot: str = NEXT) -> None:
        field = self.get_field(name, snapshot)
        self.ghost_exchange.scatter_master_to_ghosted(field.view(component), field.owned[component])

    def commit_step(self) -> None:
        """Advance: "next" becomes the new "previous" (deep copies)."""
        for name, value in self._fields[NEXT].items():
            self._fields[PREVIOUS][name] = value.copy()
            self.mark_changed(name, PREVIOUS)
        self._scalars[PREVIOUS].update(self._scalars[NEXT])
        self._times[PREVIOUS] = self._times[NEXT]
