from __future__ import annotations

import logging
import os
from typing import Optional


_TRUTHY = {"1", "true", "yes", "on"}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


def _parse_level(value, default_level: int) -> int:
    if value is None:
        return default_level
    if isinstance(value, int):
        return int(value)
    text = str(value).strip().upper()
    if not text:
        return default_level
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text)
    if isinstance(resolved, int):
        return resolved
    return default_level


def is_root_rank(comm=None) -> bool:
    """
    Return True on rank 0 of comm (or COMM_WORLD); serial runs are always root.
    """
    from parallel.mpi_bootstrap import as_mpi4py_comm

    mpicomm = as_mpi4py_comm(comm)
    if mpicomm is None:
        return True
    return int(mpicomm.Get_rank()) == 0


def get_log_level_from_env(default: str | int = "INFO") -> int:
    """
    Resolve log level from env (FROZEN_LOG_LEVEL, or FROZEN_DEBUG for DEBUG).
    """
    default_level = _parse_level(default, logging.INFO)
    env_level = os.environ.get("FROZEN_LOG_LEVEL")
    if env_level:
        return _parse_level(env_level, default_level)
    if _is_truthy(os.environ.get("FROZEN_DEBUG")):
        return logging.DEBUG
    return default_level


def setup_logging(rank: int = 0, *, level: Optional[int] = None, quiet_nonroot: bool = True) -> None:
    """
    Configure root logging once; console handlers on non-root ranks only show warnings.
    """
    if level is None:
        level = get_log_level_from_env()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)

    console_level = max(level, logging.WARNING) if (quiet_nonroot and rank != 0) else level
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            continue
        handler.setLevel(console_level)
