"""Shared configuration and cache containers for the integrator kernels."""

from typing import Callable

from attrs import define, field, validators

from cunpt.CUDAFactory import CUDAFactoryConfig, KernelCache
from cunpt._utils import power_of_two_validator
from cunpt.cuda_simsafe import MAX_THREADS_PER_BLOCK


@define
class StepKernelConfig(CUDAFactoryConfig):
    """Compile settings for the per-particle update kernels.

    Only the precision is compile-critical; block and grid shape are chosen
    at launch time.
    """


@define
class ReductionKernelConfig(CUDAFactoryConfig):
    """Compile settings for the block-parallel reduction kernels.

    Parameters
    ----------
    precision
        numpy datatype to work in: float32 or float64
    block_size
        Threads per block. Sizes the shared scratch buffer, so it is fixed
        at compile time and must be a power of two for the halving loop.
    """

    block_size: int = field(
        default=128,
        validator=[
            power_of_two_validator,
            validators.le(MAX_THREADS_PER_BLOCK),
        ],
    )


@define
class KernelOutput(KernelCache):
    """Cache holding a single compiled kernel."""

    kernel: Callable = field(eq=False)
