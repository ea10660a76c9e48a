"""
Frozen coupled flow/energy: predictor correction and admissibility layered on
top of an external nonlinear solve.

The solution vector is a BlockVector with "flow" (pressure) and "energy"
(temperature) sub-vectors. Hooks called by the outer solver:
  - predictor(t_new, u):       history extrapolation + modify_predictor
  - modify_predictor(h, u):    freeze/thaw correction, pressure projection, faces
  - fun(t_old, t_new, ...):    residual evaluation, retains its 2-norm
  - is_admissible(up):         coupled-solver predicate AND residual backtracking
  - commit_solution(t, u):     accept a step (store snapshot + history record)
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

import numpy as np

from core.fields import NEXT, PREVIOUS, BlockVector, FieldStore
from core.types import CoupledConfig
from parallel.collectives import global_any
from physics.face_average import FaceAverager
from physics.frozen_column import initialize_from_frozen_column
from physics.phase_transition import PhaseTransitionResult, detect_phase_transitions
from physics.pressure_projection import MassConsistentPressureProjector, ProjectionStats
from solvers.admissibility import (
    AdmissibilityResult,
    BacktrackContext,
    check_admissible,
    record_residual_norm,
)
from solvers.history import SolutionHistory

logger = logging.getLogger(__name__)


class ResidualEvaluator(Protocol):
    def evaluate(
        self,
        t_old: float,
        t_new: float,
        u_old: Optional[BlockVector],
        u_new: BlockVector,
    ) -> BlockVector: ...


def finite_admissible(up: BlockVector) -> bool:
    """Default coupled-solver predicate: every owned value is finite."""
    for _, sub in up:
        for name in sub.names():
            if not np.all(np.isfinite(sub.view_owned(name))):
                return False
    return True


class FrozenCoupledFlowEnergy:
    """Coupler for the frozen flow/energy system (owns history and backtracking state)."""

    def __init__(
        self,
        cfg: CoupledConfig,
        store: FieldStore,
        residual: ResidualEvaluator,
        *,
        base_admissible: Optional[Callable[[BlockVector], bool]] = finite_admissible,
        flow_name: str = "flow",
        energy_name: str = "energy",
        pressure_key: str = "pressure",
        temperature_key: str = "temperature",
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.residual = residual
        self.base_admissible = base_admissible
        self.flow_name = flow_name
        self.energy_name = energy_name
        self.pressure_key = pressure_key
        self.temperature_key = temperature_key

        self.projector = MassConsistentPressureProjector(cfg.projection)
        self.averager = FaceAverager(store)
        self.backtrack = BacktrackContext.from_config(cfg.backtracking)
        self.history: Optional[SolutionHistory] = None
        self.last_admissibility: Optional[AdmissibilityResult] = None
        self.last_transitions: Optional[PhaseTransitionResult] = None
        self.last_projection: Optional[ProjectionStats] = None

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------
    def solution_vector(self, snapshot: str = NEXT) -> BlockVector:
        """Block view of the stored pressure/temperature (shares storage)."""
        return BlockVector(
            {
                self.flow_name: self.store.get_field(self.pressure_key, snapshot),
                self.energy_name: self.store.get_field(self.temperature_key, snapshot),
            }
        )

    def initialize(self) -> BlockVector:
        """
        Optionally overwrite the initial state from the frozen column, then
        commit it as the first accepted solution. Returns a copy of u0.
        """
        fc = self.cfg.frozen_column
        if fc.enabled:
            initialize_from_frozen_column(
                self.store,
                float(fc.water_table_height),
                temperature_key=self.temperature_key,
                pressure_key=self.pressure_key,
            )
        u0 = self.solution_vector().copy()
        self.commit_solution(self.store.time(NEXT), u0)
        return u0

    def commit_solution(self, t: float, u: BlockVector, udot: Optional[BlockVector] = None) -> None:
        """Accept u at time t: "next" becomes "previous" and u is recorded in history."""
        self._push_solution(u)
        self._refresh_auxiliary()
        self.store.set_time(t, NEXT)
        self.store.commit_step()

        xdot = udot if self.cfg.history.use_derivatives else None
        if self.history is None:
            self.history = SolutionHistory(self.cfg.history.max_size, t, u, xdot)
        else:
            self.history.record_solution(t, u, xdot)
        self.backtrack = BacktrackContext.from_config(self.cfg.backtracking)
        logger.debug("Committed solution at t=%g (history size %d)", t, self.history.history_size())

    # ------------------------------------------------------------------
    # predictor
    # ------------------------------------------------------------------
    def predictor(self, t_new: float, u: BlockVector) -> bool:
        """Extrapolate history to t_new into u, then correct it."""
        if self.history is None:
            raise RuntimeError("predictor() called before any solution was committed")
        order = self.history.max_order()
        if self.cfg.history.order is not None:
            order = min(order, int(self.cfg.history.order))
        self.history.interpolate_solution(t_new, u, order)
        self.store.set_time(t_new, NEXT)
        h = float(t_new) - self.history.most_recent_time()
        return self.modify_predictor(h, u)

    def modify_predictor(self, h: float, u: BlockVector) -> bool:
        """Correct the guess u in place; returns True when u was modified."""
        logger.debug(
            "Modifying guess (h=%g): T=[%.6f, %.6f] p=[%.6g, %.6g]",
            h,
            float(np.min(u.sub(self.energy_name).view_owned("cell"))),
            float(np.max(u.sub(self.energy_name).view_owned("cell"))),
            float(np.min(u.sub(self.flow_name).view_owned("cell"))),
            float(np.max(u.sub(self.flow_name).view_owned("cell"))),
        )
        if self.cfg.predictor_mode == "temperature":
            return self._modify_predictor_temperature(u)
        return self._modify_predictor_phase_change(u)

    def _push_solution(self, u: BlockVector) -> None:
        # the store aliases u so evaluators see the guess
        self.store.set_field(self.pressure_key, u.sub(self.flow_name), NEXT)
        self.store.set_field(self.temperature_key, u.sub(self.energy_name), NEXT)

    def _refresh_auxiliary(self) -> None:
        p = self.cfg.projection
        keys = (
            p.water_content_key,
            p.porosity_key,
            p.molar_density_gas_key,
            p.mol_frac_gas_key,
            p.molar_density_liquid_key,
            p.molar_density_ice_key,
            p.one_on_A_key,
        )
        for key in keys:
            if self.store.has_evaluator(key):
                self.store.recompute(key, p.requester)

    def _modify_predictor_phase_change(self, u: BlockVector) -> bool:
        n = self.store.mesh.n_cells_owned
        T_prev = self.store.get_field(self.temperature_key, PREVIOUS).view("cell")[:n]
        T_guess = u.sub(self.energy_name).view("cell")[:n]

        transitions = detect_phase_transitions(T_prev, T_guess, self.cfg.phase_change)
        self.last_transitions = transitions

        self._push_solution(u)
        self._refresh_auxiliary()

        self.last_projection = self.projector.project(
            self.store,
            u.sub(self.flow_name).view("cell"),
            changed=transitions.changed_mask(),
        )

        # collective: every rank must agree before exchanging ghosts
        update_faces = global_any(transitions.any_changed, self.store.comm)
        if update_faces:
            self.averager.update_faces((self.temperature_key, self.pressure_key))
        return update_faces

    def _modify_predictor_temperature(self, u: BlockVector) -> bool:
        self.last_transitions = None
        self._push_solution(u)
        self._refresh_auxiliary()
        self.last_projection = self.projector.project(self.store, u.sub(self.flow_name).view("cell"), changed=None)
        self.averager.update_faces((self.pressure_key,))
        return True

    # ------------------------------------------------------------------
    # residual / admissibility
    # ------------------------------------------------------------------
    def fun(
        self,
        t_old: float,
        t_new: float,
        u_old: Optional[BlockVector],
        u_new: BlockVector,
    ) -> BlockVector:
        """Evaluate the coupled residual and retain its 2-norm for backtracking."""
        g = self.residual.evaluate(t_old, t_new, u_old, u_new)
        self.backtrack = record_residual_norm(self.backtrack, g.norm2(self.store.comm))
        return g

    def _candidate_residual_norm(self, up: BlockVector) -> float:
        g = self.residual.evaluate(self.store.time(PREVIOUS), self.store.time(NEXT), None, up)
        return g.norm2(self.store.comm)

    def is_admissible(self, up: BlockVector) -> bool:
        result, self.backtrack = check_admissible(
            self.backtrack,
            up,
            self._candidate_residual_norm,
            base_admissible=self.base_admissible,
        )
        self.last_admissibility = result
        return result.accepted
