"""Second half of the two-step Nosé-Hoover NPT update."""

from typing import Optional

from numba import cuda, int32

from cunpt.CUDAFactory import CUDAFactory
from cunpt.cuda_simsafe import compile_kwargs
from cunpt.kernels.base import KernelOutput, StepKernelConfig
from cunpt.time_logger import TimeLogger


class StepTwoKernel(CUDAFactory):
    """Builds the force-driven closing half kick.

    For every group member the acceleration is recomputed from the fresh net
    force, ``a = f / m``, and the velocity receives the same scaled half kick
    as in step one. The new acceleration is written back for the next step;
    positions are not touched.

    Kernel arguments, in order: ``velocity (N, 4)``, ``acceleration (N, 3)``,
    ``net_force (N, >=3)`` and ``mass (N,)`` (both read only), ``members``,
    ``group_size``, ``vel_scale``, ``dt``.
    """

    name = "step_two"

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
                precision[:],
                int32[:],
                int32,
                precision,
                precision,
            ),
            **compile_kwargs,
        )
        def step_two_kernel(
            velocity,
            acceleration,
            net_force,
            mass,
            members,
            group_size,
            vel_scale,
            dt,
        ):
            group_index = cuda.grid(1)
            if group_index >= group_size:
                return
            idx = members[group_index]

            m = mass[idx]
            vel_scale_sq = vel_scale * vel_scale
            kick = half * dt * vel_scale
            for d in range(3):
                a = net_force[idx, d] / m
                acceleration[idx, d] = a
                velocity[idx, d] = velocity[idx, d] * vel_scale_sq + kick * a
        # no cover: end

        return KernelOutput(kernel=step_two_kernel)
