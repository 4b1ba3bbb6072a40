"""Box dilation and periodic re-wrapping of every particle."""

from math import floor
from typing import Optional

from numba import cuda, int32

from cunpt.CUDAFactory import CUDAFactory
from cunpt.cuda_simsafe import compile_kwargs
from cunpt.kernels.base import KernelOutput, StepKernelConfig
from cunpt.time_logger import TimeLogger


class BoxRescaleKernel(CUDAFactory):
    """Builds the kernel that dilates positions and re-applies wrapping.

    Notes
    -----
    The kernel runs one thread per particle over ``[0, n_particles)``,
    regardless of group membership, so particles outside the integration
    group stay inside the periodic cell as the box changes.

    For each coordinate the position is multiplied by ``len_scale`` and then
    wrapped into ``[-L / 2, L / 2)`` of the *already scaled* box length
    ``L``. The shift is ``floor(p / L + 0.5)`` box lengths, so a particle
    sitting exactly on ``+L / 2`` moves to ``-L / 2``. The shift is added to
    the image counter to keep unwrapped trajectories continuous.

    Kernel arguments, in order: ``position (N, 4)``, ``image (N, 3)``,
    ``n_particles``, ``len_scale``, ``box_lengths (3,)`` holding the scaled
    lengths.
    """

    name = "box_rescale"

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
                int32[:, :],
                int32,
                precision,
                precision[:],
            ),
            **compile_kwargs,
        )
        def box_rescale_kernel(
            position,
            image,
            n_particles,
            len_scale,
            box_lengths,
        ):
            idx = cuda.grid(1)
            if idx >= n_particles:
                return

            for d in range(3):
                length = box_lengths[d]
                p = position[idx, d] * len_scale
                shift = int32(floor(p / length + half))
                position[idx, d] = p - precision(shift) * length
                image[idx, d] += shift
        # no cover: end

        return KernelOutput(kernel=box_rescale_kernel)
