"""
Driver for a soil column cooled from the surface, serial or under MPI.

Responsibilities:
- Detect MPI rank/size; on more than one rank build a block partition and a
  PETSc ghost exchange (PETSc is bootstrapped after mpi4py).
- Load CoupledConfig from YAML.
- Build the column store: uniform auxiliary state, water-retention curves
  and a water content evaluated from liquid saturation.
- Advance a prescribed surface cooling: each step's guess is corrected by
  the coupler, checked for admissibility and committed.
- Log per-step summaries on the root rank; stop early on failure.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import traceback
from typing import Optional, Sequence, Tuple

import numpy as np

from core.config import load_coupled_config
from core.fields import NEXT, PREVIOUS, BlockVector, CompositeField, FieldStore, FunctionEvaluator
from core.logging_utils import get_log_level_from_env, setup_logging
from core.mesh import DEFAULT_REGION, build_column_partition
from core.types import CellClass
from parallel.collectives import global_max, global_sum
from properties.wrm import WRMEvaluator, WRMRegionList, WRMVanGenuchten
from solvers.frozen_coupler import FrozenCoupledFlowEnergy

logger = logging.getLogger(__name__)

P_ATM = 101325.0


def _get_mpi_rank_size() -> Tuple[int, int]:
    """Best-effort MPI rank/size detection without forcing PETSc imports."""
    try:
        from mpi4py import MPI

        return int(MPI.COMM_WORLD.Get_rank()), int(MPI.COMM_WORLD.Get_size())
    except ImportError:
        pass

    def _env_int(name: str) -> Optional[int]:
        raw = os.environ.get(name)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    size = _env_int("OMPI_COMM_WORLD_SIZE") or _env_int("PMI_SIZE")
    rank = _env_int("OMPI_COMM_WORLD_RANK") or _env_int("PMI_RANK")
    if size is None or size < 1:
        size = 1
    if rank is None or rank < 0:
        rank = 0
    return rank, size


class IncrementResidual:
    """Departure of a candidate state from the last accepted one."""

    def __init__(self, store: FieldStore) -> None:
        self.store = store

    def evaluate(self, t_old, t_new, u_old: Optional[BlockVector], u_new: BlockVector) -> BlockVector:
        if u_old is None:
            u_old = BlockVector(
                {
                    "flow": self.store.get_field("pressure", PREVIOUS),
                    "energy": self.store.get_field("temperature", PREVIOUS),
                }
            )
        g = u_new.copy()
        g.update(-1.0, u_old, 1.0)
        return g


def build_column_store(
    n_cells: int,
    dz: float,
    *,
    T0: float,
    p0: float,
    rank: int = 0,
    size: int = 1,
    comm=None,
    porosity: float = 0.5,
    wrm: Optional[WRMVanGenuchten] = None,
) -> FieldStore:
    """Column store for this rank; a PETSc ghost exchange is attached when size > 1."""
    mesh, ghosts = build_column_partition(n_cells, dz, rank=rank, size=size)
    exchange = None
    if size > 1:
        from parallel.ghost_exchange import PetscGhostExchange

        exchange = PetscGhostExchange(mesh.n_cells_owned, ghosts)
    store = FieldStore(mesh, ghost_exchange=exchange, comm=comm)

    n_used = mesh.n_cells_used
    n_liq = 55000.0
    cv = mesh.cell_volumes.copy()
    store.set_field("temperature", CompositeField.zeros_like_mesh(mesh, value=T0))
    store.set_field("pressure", CompositeField.zeros_like_mesh(mesh, value=p0))
    store.set_field("cell_volume", CompositeField({"cell": cv}, {"cell": mesh.n_cells_owned}))
    uniform = {
        "porosity": porosity,
        "molar_density_gas": 0.0,
        "mol_frac_gas": 0.0,
        "molar_density_liquid": n_liq,
        "molar_density_ice": 50000.0,
        "wrm_permafrost_one_on_A": 1.0,
    }
    for key, value in uniform.items():
        store.set_field(key, CompositeField({"cell": np.full(n_used, value)}, {"cell": mesh.n_cells_owned}))
    store.set_scalar("atmospheric_pressure", P_ATM)

    curve = wrm if wrm is not None else WRMVanGenuchten(alpha=1.0e-4, n=2.0)
    store.register_evaluator(WRMEvaluator(WRMRegionList([(DEFAULT_REGION, curve)])))

    def water_content(s: FieldStore) -> CompositeField:
        sat = s.get_field("saturation_liquid").view("cell")
        return CompositeField({"cell": cv * porosity * n_liq * sat}, {"cell": mesh.n_cells_owned})

    store.register_evaluator(FunctionEvaluator("water_content", water_content, ("saturation_liquid",)))
    return store


def surface_cooling(z: np.ndarray, z_top: float, amount: float, damping_depth: float) -> np.ndarray:
    """Temperature drop at elevations z, decaying exponentially below the surface."""
    return amount * np.exp(-(z_top - z) / damping_depth)


def run_case(
    cfg_path: str,
    *,
    n_cells: int = 20,
    dz: float = 0.1,
    dt: float = 3600.0,
    n_steps: int = 10,
    T0: float = 274.0,
    p0: float = 90000.0,
    cooling_rate: float = 1.0e-4,
    damping_depth: float = 0.5,
    log_level: int | str = logging.INFO,
) -> int:
    """Run the cooled column. Return 0 on success, non-zero on early failure."""
    try:
        rank, size = _get_mpi_rank_size()
        level = get_log_level_from_env(default=log_level)
        setup_logging(rank, level=level, quiet_nonroot=True)
        is_root = rank == 0

        if dt <= 0.0 or n_steps < 1:
            logger.error("dt must be positive and n_steps >= 1 (dt=%s, n_steps=%s)", dt, n_steps)
            return 2
        if damping_depth <= 0.0:
            logger.error("damping_depth must be positive (got %s)", damping_depth)
            return 2

        comm = None
        if size > 1:
            from parallel.mpi_bootstrap import as_mpi4py_comm, bootstrap_mpi_before_petsc

            bootstrap_mpi_before_petsc()
            comm = as_mpi4py_comm(None)

        cfg = load_coupled_config(cfg_path)
        store = build_column_store(n_cells, dz, T0=T0, p0=p0, rank=rank, size=size, comm=comm)
        coupler = FrozenCoupledFlowEnergy(cfg, store, IncrementResidual(store))
        coupler.initialize()

        mesh = store.mesh
        n = mesh.n_cells_owned
        z = mesh.cell_centroids[:n, -1]
        z_top = n_cells * dz
        dT = surface_cooling(z, z_top, cooling_rate * dt, damping_depth)

        t = store.time(PREVIOUS)
        for step_id in range(1, n_steps + 1):
            t_new = t + dt
            u_old = coupler.solution_vector(PREVIOUS)
            u = coupler.solution_vector(NEXT).copy()
            u.sub("energy").view("cell")[:n] -= dT
            store.set_time(t_new, NEXT)

            changed = coupler.modify_predictor(dt, u)
            g = coupler.fun(t, t_new, u_old, u)
            if not coupler.is_admissible(u):
                if is_root:
                    logger.error("step=%d: corrected state rejected at t=%.6e", step_id, t_new)
                return 1
            coupler.commit_solution(t_new, u)

            transitions = coupler.last_transitions
            n_freezing = transitions.count(CellClass.FREEZING) if transitions is not None else 0
            n_freezing = int(global_sum(float(n_freezing), comm))
            T_cells = u.sub("energy").view_owned("cell")
            T_min = -global_max(-float(T_cells.min()), comm)
            res = g.norm2(comm)
            if is_root:
                logger.info(
                    "step=%d t=[%.6e -> %.6e] changed=%s freezing=%d T_min=%.4f |g|=%.3e",
                    step_id,
                    t,
                    t_new,
                    changed,
                    n_freezing,
                    T_min,
                    res,
                )
            t = t_new

        if is_root:
            logger.info("Completed run: %d steps, t=%.6e", n_steps, t)
        return 0
    except Exception:
        tb = traceback.format_exc()
        logger.error("Unhandled exception:\n%s", tb)
        return 99


def _parse_args(argv: Optional[Sequence[str]] = None) -> Tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(description="Run a surface-cooled frozen soil column.")
    parser.add_argument("case_yaml", help="Path to coupler YAML file.")
    parser.add_argument("--n_cells", type=int, default=20, help="Global number of cells.")
    parser.add_argument("--dz", type=float, default=0.1, help="Cell height [m].")
    parser.add_argument("--dt", type=float, default=3600.0, help="Step size [s].")
    parser.add_argument("--n_steps", type=int, default=10, help="Number of steps.")
    parser.add_argument("--T0", type=float, default=274.0, help="Initial temperature [K].")
    parser.add_argument("--p0", type=float, default=90000.0, help="Initial pressure [Pa].")
    parser.add_argument("--cooling_rate", type=float, default=1.0e-4, help="Surface cooling [K/s].")
    parser.add_argument("--damping_depth", type=float, default=0.5, help="Cooling e-folding depth [m].")
    args, unknown = parser.parse_known_args(argv)
    return args, list(unknown)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args, petsc_args = _parse_args(argv)
    # Prevent PETSc from parsing driver-specific CLI flags.
    sys.argv = [sys.argv[0]] + list(petsc_args)
    return run_case(
        args.case_yaml,
        n_cells=args.n_cells,
        dz=args.dz,
        dt=args.dt,
        n_steps=args.n_steps,
        T0=args.T0,
        p0=args.p0,
        cooling_rate=args.cooling_rate,
        damping_depth=args.damping_depth,
    )


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
