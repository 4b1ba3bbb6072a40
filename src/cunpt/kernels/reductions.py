"""Block-parallel partial sums of twice the kinetic energy and the virial.

Both kernels follow the same pattern: each thread loads one particle's
contribution (zero past the end of the range) into a shared scratch buffer,
the block folds the buffer in half ``log2(block_size)`` times with a barrier
after every fold, and thread 0 stores the block total in
``partials[blockIdx.x]``. Combining the per-block partials into one scalar is
done on the host by :func:`cunpt.thermo.combine_partial_sums`.
"""

from typing import Optional

from numba import cuda, int32

from cunpt.CUDAFactory import CUDAFactory
from cunpt.cuda_simsafe import compile_kwargs
from cunpt.kernels.base import KernelOutput, ReductionKernelConfig
from cunpt.time_logger import TimeLogger


def build_block_sum(block_size: int):
    """Return a device function folding a shared buffer into slot 0.

    Parameters
    ----------
    block_size
        Length of the shared buffer; a power of two.

    Returns
    -------
    callable
        ``block_sum(scratch, tid)``, returning the block total. Every thread
        of the block must call it, since it contains barriers.
    """

    # no cover: start
    @cuda.jit(device=True, inline=True, **compile_kwargs)
    def block_sum(scratch, tid):
        stride = block_size // 2
        while stride > 0:
            if tid < stride:
                scratch[tid] += scratch[tid + stride]
            cuda.syncthreads()
            stride //= 2
        return scratch[0]
    # no cover: end

    return block_sum


class ReductionKernel(CUDAFactory):
    """Common setup for the reduction kernel factories."""

    def __init__(
        self,
        precision,
        block_size: int = 128,
        time_logger: Optional[TimeLogger] = None,
    ):
        super().__init__(time_logger)
        self.setup_compile_settings(
            ReductionKernelConfig(precision=precision, block_size=block_size)
        )

    @property
    def block_size(self) -> int:
        return self.compile_settings.block_size


class GroupTemperatureReduction(ReductionKernel):
    """Per-block ``sum(m * |v|**2)`` over the integration group.

    Kernel arguments, in order: ``partial_2k (num_blocks,)``,
    ``velocity (N, 4)``, ``mass (N,)``, ``members``, ``group_size``.
    """

    name = "group_temperature_reduce"

    def build(self) -> KernelOutput:
        config = self.compile_settings
        precision = config.numba_precision
        scratch_dtype = config.simsafe_precision
        block_size = config.block_size
        zero = precision(0.0)
        block_sum = build_block_sum(block_size)

        # no cover: start
        @cuda.jit(
            (
                precision[:],
                precision[:, :],
                precision[:],
                int32[:],
                int32,
            ),
            **compile_kwargs,
        )
        def group_temperature_kernel(
            partial_2k,
            velocity,
            mass,
            members,
            group_size,
        ):
            scratch = cuda.shared.array(block_size, scratch_dtype)
            tid = cuda.threadIdx.x
            group_index = cuda.grid(1)

            contribution = zero
            if group_index < group_size:
                idx = members[group_index]
                vx = velocity[idx, 0]
                vy = velocity[idx, 1]
                vz = velocity[idx, 2]
                contribution = mass[idx] * (vx * vx + vy * vy + vz * vz)
            scratch[tid] = contribution
            cuda.syncthreads()

            total = block_sum(scratch, tid)
            if tid == 0:
                partial_2k[cuda.blockIdx.x] = total
        # no cover: end

        return KernelOutput(kernel=group_temperature_kernel)


class PressureReduction(ReductionKernel):
    """Per-block virial and ``2K`` sums over every particle.

    The virial pass runs first and its partial is stored before a barrier;
    only then is the scratch buffer reloaded for the kinetic pass.

    Kernel arguments, in order: ``partial_2k (num_blocks,)``,
    ``partial_w (num_blocks,)``, ``velocity (N, 4)``, ``mass (N,)``,
    ``virial (N,)``, ``n_particles``.
    """

    name = "pressure_reduce"

    def build(self) -> KernelOutput:
        config = self.compile_settings
        precision = config.numba_precision
        scratch_dtype = config.simsafe_precision
        block_size = config.block_size
        zero = precision(0.0)
        block_sum = build_block_sum(block_size)

        # no cover: start
        @cuda.jit(
            (
                precision[:],
                precision[:],
                precision[:, :],
                precision[:],
                precision[:],
                int32,
            ),
            **compile_kwargs,
        )
        def pressure_kernel(
            partial_2k,
            partial_w,
            velocity,
            mass,
            virial,
            n_particles,
        ):
            scratch = cuda.shared.array(block_size, scratch_dtype)
            tid = cuda.threadIdx.x
            idx = cuda.grid(1)
            in_range = idx < n_particles

            w = zero
            if in_range:
                w = virial[idx]
            scratch[tid] = w
            cuda.syncthreads()
            total_w = block_sum(scratch, tid)
            if tid == 0:
                partial_w[cuda.blockIdx.x] = total_w
            cuda.syncthreads()

            contribution = zero
            if in_range:
                vx = velocity[idx, 0]
                vy = velocity[idx, 1]
                vz = velocity[idx, 2]
                contribution = mass[idx] * (vx * vx + vy * vy + vz * vz)
            scratch[tid] = contribution
            cuda.syncthreads()
            total_2k = block_sum(scratch, tid)
            if tid == 0:
                partial_2k[cuda.blockIdx.x] = total_2k
        # no cover: end

        return KernelOutput(kernel=pressure_kernel)
