from __future__ import annotations

_BOOTSTRAPPED = False
_PETSC_BOOTSTRAPPED = False


def bootstrap_mpi() -> None:
    """
    Ensure mpi4py initializes before petsc4py.
    """
    global _BOOTSTRAPPED
    if _BOOTSTRAPPED:
        return
    _BOOTSTRAPPED = True

    try:
        from mpi4py import MPI  # noqa: F401
    except ImportError:
        return


def bootstrap_mpi_before_petsc() -> None:
    """
    Initialize petsc4py after mpi4py; argv is withheld under pytest.
    """
    bootstrap_mpi()

    global _PETSC_BOOTSTRAPPED
    if _PETSC_BOOTSTRAPPED:
        return
    _PETSC_BOOTSTRAPPED = True

    import os
    import sys

    import petsc4py

    argv = [] if os.environ.get("PYTEST_CURRENT_TEST") else sys.argv
    petsc4py.init(argv)


def as_mpi4py_comm(comm):
    """
    Return an mpi4py communicator for comm, or None for serial runs.

    Accepts mpi4py communicators, PETSc communicators (tompi4py) and None.
    A None comm with a single-process COMM_WORLD stays serial.
    """
    if comm is not None:
        if hasattr(comm, "tompi4py"):
            return comm.tompi4py()
        if hasattr(comm, "Get_size"):
            return comm
        raise TypeError(f"Unsupported communicator type: {type(comm).__name__}")

    try:
        from mpi4py import MPI
    except ImportError:
        return None
    world = MPI.COMM_WORLD
    return world if world.Get_size() > 1 else None
