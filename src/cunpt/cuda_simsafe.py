"""Simulation-safe CUDA helpers and stand-ins.

This module centralises compatibility utilities for environments running with
``NUMBA_ENABLE_CUDASIM=1``.  It exposes a consistent surface so callers can
import CUDA-facing helpers without branching on simulator state.
"""
from __future__ import annotations

import os
from typing import Any

import numba
from numba import cuda
import numpy as np


CUDA_SIMULATION: bool = os.environ.get("NUMBA_ENABLE_CUDASIM") == "1"

#: Hard upper bound on threads per block for every supported device.
MAX_THREADS_PER_BLOCK: int = 1024


class FakeCudaAPIError(Exception):  # pragma: no cover - placeholder
    """Stand-in for the driver API error raised by real CUDA launches.

    The simulator executes kernels synchronously in Python threads, so the
    driver never reports launch or deferred faults through this type.
    """

    def __init__(self, code: int = 0, msg: str = "") -> None:
        super().__init__(code, msg)
        self.code = code
        self.msg = msg


if CUDA_SIMULATION:  # pragma: no cover - simulated
    from numba.cuda.simulator.cudadrv.devicearray import FakeCUDAArray

    CudaAPIError = FakeCudaAPIError
    DeviceNDArrayBase = FakeCUDAArray
    compile_kwargs: dict = {}

else:  # pragma: no cover - exercised in GPU environments
    from numba.cuda.cudadrv.driver import (  # type: ignore[attr-defined]
        CudaAPIError,
    )
    from numba.cuda.cudadrv.devicearray import (  # type: ignore[attr-defined]
        DeviceNDArrayBase,
    )

    compile_kwargs = {"lineinfo": True}


def is_cuda_array(value: Any) -> bool:
    """Check whether ``value`` should be treated as a CUDA array."""

    if CUDA_SIMULATION:
        return isinstance(value, DeviceNDArrayBase)
    return cuda.is_cuda_array(value)


def from_dtype(dtype: np.dtype):
    """Return a CUDA-ready dtype or a simulator-safe placeholder."""

    if not CUDA_SIMULATION:
        return numba.from_dtype(dtype)
    return dtype


__all__ = [
    "CUDA_SIMULATION",
    "MAX_THREADS_PER_BLOCK",
    "CudaAPIError",
    "DeviceNDArrayBase",
    "FakeCudaAPIError",
    "compile_kwargs",
    "from_dtype",
    "is_cuda_array",
]
