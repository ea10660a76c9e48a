"""
Global reductions over the local mesh partitions.

Serial runs (no communicator, or mpi4py absent with a single process) return
the local value unchanged.
"""

from __future__ import annotations

from parallel.mpi_bootstrap import as_mpi4py_comm


def global_sum(value: float, comm=None) -> float:
    mpicomm = as_mpi4py_comm(comm)
    if mpicomm is None:
        return float(value)
    from mpi4py import MPI

    return float(mpicomm.allreduce(float(value), op=MPI.SUM))


def global_max(value: float, comm=None) -> float:
    mpicomm = as_mpi4py_comm(comm)
    if mpicomm is None:
        return float(value)
    from mpi4py import MPI

    return float(mpicomm.allreduce(float(value), op=MPI.MAX))


def global_any(flag: bool, comm=None) -> bool:
    mpicomm = as_mpi4py_comm(comm)
    if mpicomm is None:
        return bool(flag)
    from mpi4py import MPI

    return bool(mpicomm.allreduce(bool(flag), op=MPI.LOR))
