"""Launch driver for the two-step Nosé-Hoover NPT kernels.

The driver is the only place kernels are launched from. For every entry point
it

1. binds the read-only inputs, sized to the live particle count,
2. works out the execution grid from the block size and worker count,
3. launches the kernel, and
4. in checked mode, synchronises and polls for deferred faults.

Failures in steps 1 and 2 raise before any kernel work is queued, so a
failed call never leaves particle data partially updated by this launch.
Every entry point returns :attr:`KernelStatus.SUCCESS` or raises a subclass
of :class:`cunpt.errors.NPTKernelError` carrying the matching status.
"""

from typing import Optional, Tuple
from warnings import warn

import numpy as np
from attrs import define, field, validators
from numba import cuda
from numpy.typing import ArrayLike

from cunpt._utils import (
    PrecisionDType,
    ceil_div,
    power_of_two_validator,
    precision_converter,
    precision_validator,
)
from cunpt.coupling import ScalingFactors
from cunpt.cuda_simsafe import (
    CudaAPIError,
    MAX_THREADS_PER_BLOCK,
    is_cuda_array,
)
from cunpt.errors import (
    ExecutionFaultError,
    KernelStatus,
    LaunchConfigurationError,
    ResourceBindingError,
)
from cunpt.kernels import (
    BoxRescaleKernel,
    GroupTemperatureReduction,
    PressureReduction,
    StepOneKernel,
    StepTwoKernel,
)
from cunpt.particles import Box, GroupMembership, ParticleData
from cunpt.time_logger import TimeLogger, default_timelogger

# Single-step box changes beyond this fraction are almost always an
# unstable barostat rather than intended dynamics.
LARGE_RESCALE_FRACTION = 0.1


@define(frozen=True)
class DriverConfig:
    """Settings fixed for the lifetime of a driver.

    Parameters
    ----------
    precision
        numpy datatype of the particle arrays: float32 or float64
    block_size
        Default threads per block, used when an entry point is not given
        one. A power of two, as the reductions require.
    checked
        When True, every launch is followed by a device synchronisation so
        that faults are attributed to the kernel that caused them.
    """

    precision: PrecisionDType = field(
        default=np.float64,
        converter=precision_converter,
        validator=precision_validator,
    )
    block_size: int = field(
        default=128,
        validator=[
            power_of_two_validator,
            validators.le(MAX_THREADS_PER_BLOCK),
        ],
    )
    checked: bool = field(
        default=False, validator=validators.instance_of(bool)
    )


class NPTKernelDriver:
    """Binds inputs, configures grids and launches the NPT kernels.

    Parameters
    ----------
    precision
        numpy datatype the particle arrays are stored in.
    block_size
        Default threads per block.
    checked
        Synchronise after each launch and report deferred faults. Trades
        throughput for diagnosability; fixed for the driver's lifetime.
    time_logger
        Receives compile events, and launch events when its verbosity is
        'verbose' or 'debug'.
    """

    def __init__(
        self,
        precision: PrecisionDType = np.float64,
        block_size: int = 128,
        checked: bool = False,
        time_logger: Optional[TimeLogger] = None,
    ):
        self.config = DriverConfig(
            precision=precision, block_size=block_size, checked=checked
        )
        if time_logger is None:
            time_logger = default_timelogger
        self._time_logger = time_logger

        precision = self.config.precision
        self._step_one = StepOneKernel(precision, time_logger)
        self._step_two = StepTwoKernel(precision, time_logger)
        self._box_rescale = BoxRescaleKernel(precision, time_logger)
        self._temperature = GroupTemperatureReduction(
            precision, self.config.block_size, time_logger
        )
        self._pressure = PressureReduction(
            precision, self.config.block_size, time_logger
        )

    @property
    def precision(self) -> PrecisionDType:
        return self.config.precision

    @property
    def checked(self) -> bool:
        return self.config.checked

    @property
    def block_size(self) -> int:
        return self.config.block_size

    # ------------------------------------------------------------------ #
    #                           Entry points                             #
    # ------------------------------------------------------------------ #

    def step_one(
        self,
        particles: ParticleData,
        group: GroupMembership,
        xi: float,
        eta: float,
        dt: float,
        block_size: Optional[int] = None,
        num_blocks: Optional[int] = None,
    ) -> KernelStatus:
        """Half-kick velocities and drift positions of group members."""
        name = self._step_one.name
        n = self._check_particles(name, particles)
        members = self._bind_group(name, group, n)
        acceleration = self._bind_readonly(
            name, "acceleration", particles.acceleration, n, 3
        )
        block_size, num_blocks = self._grid(
            name, group.size, block_size, num_blocks
        )
        factors = ScalingFactors.from_coupling(xi, eta, dt)
        precision = self.precision

        return self._launch(
            self._step_one,
            num_blocks,
            block_size,
            particles.position,
            particles.velocity,
            acceleration,
            members,
            group.size,
            precision(factors.vel_scale),
            precision(factors.pos_scale),
            precision(dt),
        )

    def box_rescale(
        self,
        particles: ParticleData,
        box: Box,
        eta: float,
        dt: float,
        block_size: Optional[int] = None,
    ) -> Tuple[KernelStatus, Box]:
        """Dilate the box by ``exp(eta * dt)`` and re-wrap every particle.

        Returns
        -------
        tuple[KernelStatus, Box]
            The status and the scaled box. The caller must adopt the
            returned box; ``box`` itself is immutable and left unchanged.
        """
        name = self._box_rescale.name
        n = self._check_particles(name, particles)
        if not isinstance(box, Box):
            raise ResourceBindingError(
                name, f"box must be a Box, got {type(box).__name__}"
            )
        block_size, num_blocks = self._grid(name, n, block_size, None)

        try:
            factors = ScalingFactors.from_coupling(0.0, eta, dt)
            new_box = box.scaled(factors.len_scale)
        except (OverflowError, ValueError) as err:
            raise LaunchConfigurationError(
                name, f"box can not be scaled by exp({eta} * {dt})"
            ) from err
        if abs(factors.len_scale - 1.0) > LARGE_RESCALE_FRACTION:
            warn(
                f"Box lengths change by a factor of {factors.len_scale:.4f} "
                "in a single step; the barostat may be unstable.",
                RuntimeWarning,
            )
        box_lengths = cuda.to_device(new_box.as_array(self.precision))

        status = self._launch(
            self._box_rescale,
            num_blocks,
            block_size,
            particles.position,
            particles.image,
            n,
            self.precision(factors.len_scale),
            box_lengths,
        )
        return status, new_box

    def step_two(
        self,
        particles: ParticleData,
        group: GroupMembership,
        net_force: ArrayLike,
        xi: float,
        eta: float,
        dt: float,
        block_size: Optional[int] = None,
        num_blocks: Optional[int] = None,
    ) -> KernelStatus:
        """Recompute accelerations and apply the closing half kick."""
        name = self._step_two.name
        n = self._check_particles(name, particles)
        members = self._bind_group(name, group, n)
        force = self._bind_readonly(name, "net_force", net_force, n, 3)
        mass = self._bind_readonly(name, "mass", particles.mass, n)
        block_size, num_blocks = self._grid(
            name, group.size, block_size, num_blocks
        )
        factors = ScalingFactors.from_coupling(xi, eta, dt)
        precision = self.precision

        return self._launch(
            self._step_two,
            num_blocks,
            block_size,
            particles.velocity,
            particles.acceleration,
            force,
            mass,
            members,
            group.size,
            precision(factors.vel_scale),
            precision(dt),
        )

    def group_temperature_reduce(
        self,
        partial_sums,
        particles: ParticleData,
        group: GroupMembership,
        block_size: Optional[int] = None,
        num_blocks: Optional[int] = None,
    ) -> KernelStatus:
        """Write one ``2K`` partial sum per block over the group members."""
        name = self._temperature.name
        n = self._check_particles(name, particles)
        members = self._bind_group(name, group, n)
        velocity = self._bind_readonly(
            name, "velocity", particles.velocity, n, 3
        )
        mass = self._bind_readonly(name, "mass", particles.mass, n)
        block_size, num_blocks = self._grid(
            name, group.size, block_size, num_blocks
        )
        self._configure_reduction(self._temperature, block_size)
        self._check_partials(name, "partial_sums", partial_sums, num_blocks)

        return self._launch(
            self._temperature,
            num_blocks,
            block_size,
            partial_sums,
            velocity,
            mass,
            members,
            group.size,
        )

    def pressure_reduce(
        self,
        partial_2k,
        partial_w,
        particles: ParticleData,
        net_virial: ArrayLike,
        block_size: Optional[int] = None,
        num_blocks: Optional[int] = None,
    ) -> KernelStatus:
        """Write one ``2K`` and one virial partial sum per block."""
        name = self._pressure.name
        n = self._check_particles(name, particles)
        velocity = self._bind_readonly(
            name, "velocity", particles.velocity, n, 3
        )
        mass = self._bind_readonly(name, "mass", particles.mass, n)
        virial = self._bind_readonly(name, "net_virial", net_virial, n)
        block_size, num_blocks = self._grid(name, n, block_size, num_blocks)
        self._configure_reduction(self._pressure, block_size)
        self._check_partials(name, "partial_2k", partial_2k, num_blocks)
        self._check_partials(name, "partial_w", partial_w, num_blocks)

        return self._launch(
            self._pressure,
            num_blocks,
            block_size,
            partial_2k,
            partial_w,
            velocity,
            mass,
            virial,
            n,
        )

    # ------------------------------------------------------------------ #
    #                         Buffer helpers                             #
    # ------------------------------------------------------------------ #

    def num_blocks_for(self, count: int, block_size: Optional[int] = None):
        """Blocks launched by default for ``count`` workers."""
        if block_size is None:
            block_size = self.block_size
        return max(1, ceil_div(count, block_size))

    def timings(self, category: Optional[str] = None) -> dict:
        """Accumulated seconds per event, e.g. ``category="compile"``.

        Launch timings are only present when the logger verbosity is
        'verbose' or 'debug'.
        """
        return self._time_logger.get_aggregate_durations(category)

    def allocate_partial_sums(self, max_blocks: int):
        """Zeroed device buffer with one slot per block."""
        if max_blocks < 1:
            raise ValueError(f"max_blocks must be positive, got {max_blocks}")
        return cuda.to_device(np.zeros(max_blocks, dtype=self.precision))

    # ------------------------------------------------------------------ #
    #                      Binding and validation                        #
    # ------------------------------------------------------------------ #

    def _check_particles(self, kernel: str, particles: ParticleData) -> int:
        if not isinstance(particles, ParticleData):
            raise ResourceBindingError(
                kernel,
                f"particles must be ParticleData, got "
                f"{type(particles).__name__}",
            )
        if np.dtype(particles.precision) != np.dtype(self.precision):
            raise ResourceBindingError(
                kernel,
                f"particles are stored in {np.dtype(particles.precision)} "
                f"but the driver works in {np.dtype(self.precision)}",
            )
        return particles.n_particles

    def _bind_group(self, kernel: str, group: GroupMembership, n: int):
        if not isinstance(group, GroupMembership):
            raise ResourceBindingError(
                kernel,
                f"group must be GroupMembership, got {type(group).__name__}",
            )
        if group.n_particles != n:
            raise ResourceBindingError(
                kernel,
                f"group was built for {group.n_particles} particles but "
                f"{n} are live",
            )
        if group.size == 0:
            warn(
                f"{kernel}: integration group is empty; no particle will "
                "be updated.",
                UserWarning,
            )
        return group.device_members

    def _bind_readonly(
        self,
        kernel: str,
        label: str,
        array,
        n_rows: int,
        min_columns: Optional[int] = None,
    ):
        """Return a device view of ``array`` restricted to ``n_rows``.

        Device arrays are sliced in place; the kernels never write through
        these views, so no copy is needed to keep reads at their
        pre-launch values. Host arrays are cast and transferred.

        Raises
        ------
        ResourceBindingError
            On a shape or dtype mismatch.
        """
        on_device = is_cuda_array(array)
        if not on_device:
            try:
                array = np.asarray(array)
            except (TypeError, ValueError) as err:
                raise ResourceBindingError(
                    kernel, f"{label} is not array-like"
                ) from err

        shape = array.shape
        expected_ndim = 1 if min_columns is None else 2
        if len(shape) != expected_ndim:
            raise ResourceBindingError(
                kernel,
                f"{label} must be {expected_ndim}-D, got shape {shape}",
            )
        if shape[0] < n_rows:
            raise ResourceBindingError(
                kernel,
                f"{label} has {shape[0]} rows, {n_rows} particles are live",
            )
        if min_columns is not None and shape[1] < min_columns:
            raise ResourceBindingError(
                kernel,
                f"{label} needs at least {min_columns} columns, "
                f"got {shape[1]}",
            )

        if on_device:
            if np.dtype(array.dtype) != np.dtype(self.precision):
                raise ResourceBindingError(
                    kernel,
                    f"{label} is {array.dtype} on the device, expected "
                    f"{np.dtype(self.precision)}",
                )
            return array[:n_rows]

        if not np.can_cast(array.dtype, self.precision, casting="same_kind"):
            raise ResourceBindingError(
                kernel, f"{label} of dtype {array.dtype} can not be bound"
            )
        host = np.ascontiguousarray(array[:n_rows], dtype=self.precision)
        return cuda.to_device(host)

    def _check_partials(self, kernel, label, buffer, num_blocks):
        if not is_cuda_array(buffer):
            raise ResourceBindingError(
                kernel, f"{label} must be a device array"
            )
        if len(buffer.shape) != 1 or (
            np.dtype(buffer.dtype) != np.dtype(self.precision)
        ):
            raise ResourceBindingError(
                kernel,
                f"{label} must be a 1-D {np.dtype(self.precision)} array",
            )
        if buffer.shape[0] < num_blocks:
            raise LaunchConfigurationError(
                kernel,
                f"{label} has {buffer.shape[0]} slots but {num_blocks} "
                "blocks would be launched",
            )

    # ------------------------------------------------------------------ #
    #                       Grid and launching                           #
    # ------------------------------------------------------------------ #

    def _grid(
        self,
        kernel: str,
        count: int,
        block_size: Optional[int],
        num_blocks: Optional[int],
    ) -> Tuple[int, int]:
        """Validate or derive ``(block_size, num_blocks)`` for ``count``."""
        if block_size is None:
            block_size = self.block_size
        block_size = int(block_size)
        if not 0 < block_size <= MAX_THREADS_PER_BLOCK:
            raise LaunchConfigurationError(
                kernel,
                f"block_size must be in [1, {MAX_THREADS_PER_BLOCK}], "
                f"got {block_size}",
            )
        if num_blocks is None:
            return block_size, self.num_blocks_for(count, block_size)

        num_blocks = int(num_blocks)
        if num_blocks < 1:
            raise LaunchConfigurationError(
                kernel, f"num_blocks must be positive, got {num_blocks}"
            )
        if num_blocks * block_size < count:
            raise LaunchConfigurationError(
                kernel,
                f"{num_blocks} blocks of {block_size} threads can not "
                f"cover {count} workers",
            )
        return block_size, num_blocks

    def _configure_reduction(self, factory, block_size: int) -> None:
        """Recompile ``factory`` for ``block_size`` if it differs."""
        if factory.block_size == block_size:
            return
        try:
            factory.update_compile_settings(block_size=block_size)
        except (TypeError, ValueError) as err:
            raise LaunchConfigurationError(
                factory.name,
                f"block_size {block_size} is not a power of two",
            ) from err

    def _launch(self, factory, num_blocks: int, block_size: int, *args):
        name = factory.name
        kernel = factory.kernel
        event_name = f"launch_{name}"
        log_launch = self._time_logger.verbosity != "default"
        if log_launch:
            self._time_logger.start_event(
                event_name,
                category="launch",
                num_blocks=num_blocks,
                block_size=block_size,
                checked=self.checked,
            )

        try:
            try:
                kernel[num_blocks, block_size](*args)
            except CudaAPIError as err:
                raise LaunchConfigurationError(
                    name, f"launch rejected by the driver: {err}"
                ) from err

            if self.checked:
                try:
                    cuda.synchronize()
                except CudaAPIError as err:
                    raise ExecutionFaultError(
                        name, f"fault detected after launch: {err}"
                    ) from err
        finally:
            if log_launch:
                self._time_logger.stop_event(event_name, category="launch")
        return KernelStatus.SUCCESS
