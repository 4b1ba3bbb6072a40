"""First half of the two-step Nosé-Hoover NPT update.

Each group member receives a scaled half kick followed by a full drift::

    v' = v * vel_scale**2 + 0.5 * dt * vel_scale * a
    p' = p + v' * dt / pos_scale

The fourth column of position (particle type) and velocity are left alone.
"""

from typing import Optional

from numba import cuda, int32

from cunpt.CUDAFactory import CUDAFactory
from cunpt.cuda_simsafe import compile_kwargs
from cunpt.kernels.base import KernelOutput, StepKernelConfig
from cunpt.time_logger import TimeLogger


class StepOneKernel(CUDAFactory):
    """Builds the velocity half-kick and position drift kernel.

    Parameters
    ----------
    precision
        numpy datatype the particle arrays are stored in.
    time_logger
        Receives the compile event. Defaults to the module-level logger.

    Notes
    -----
    Kernel arguments, in order: ``position (N, 4)``, ``velocity (N, 4)``,
    ``acceleration (N, 3)`` (read only), ``members``, ``group_size``,
    ``vel_scale``, ``pos_scale``, ``dt``. One thread per group entry;
    threads past ``group_size`` return without touching memory.
    """

    name = "step_one"

    def __init__(self, precision, time_logger: Optional[TimeLogger] = None):
        super().__init__(time_logger)
        self.setup_compile_settings(StepKernelConfig(precision=precision))

    def build(self) -> KernelOutput:
        precision = self.compile_settings.numba_precision
        half = precision(0.5)

        # no cover: start
        @cuda.jit(
            (
                precision[:, :],
                precision[:, :],
                precision[:, :],
                int32[:],
                int32,
                precision,
                precision,
                precision,
            ),
            **compile_kwargs,
        )
        def step_one_kernel(
            position,
            velocity,
            acceleration,
            members,
            group_size,
            vel_scale,
            pos_scale,
            dt,
        ):
            group_index = cuda.grid(1)
            if group_index >= group_size:
                return
            idx = members[group_index]

            vel_scale_sq = vel_scale * vel_scale
            kick = half * dt * vel_scale
            for d in range(3):
                v = (
                    velocity[idx, d] * vel_scale_sq
                    + kick * acceleration[idx, d]
                )
                velocity[idx, d] = v
                position[idx, d] = position[idx, d] + v * dt / pos_scale
        # no cover: end

        return KernelOutput(kernel=step_one_kernel)
