"""
cunpt: CUDA two-step Nosé-Hoover NPT integration kernels
"""

from importlib.metadata import version, PackageNotFoundError

# Small test systems launch grids far below device occupancy. Numba warns
# about that on every launch, which is not actionable for callers.
import warnings
from numba.core.errors import NumbaPerformanceWarning
warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)

from cunpt.coupling import (  # noqa: E402
    CouplingState,
    NoseHooverCouplingUpdater,
    ScalingFactors,
)
from cunpt.driver import DriverConfig, NPTKernelDriver  # noqa: E402
from cunpt.errors import (  # noqa: E402
    ExecutionFaultError,
    KernelStatus,
    LaunchConfigurationError,
    NPTKernelError,
    ResourceBindingError,
)
from cunpt.integrator import TwoStepNPT  # noqa: E402
from cunpt.particles import (  # noqa: E402
    Box,
    GroupMembership,
    HostParticles,
    ParticleData,
)
from cunpt.thermo import ThermoSample, combine_partial_sums  # noqa: E402
from cunpt.time_logger import TimeLogger  # noqa: E402

__all__ = [
    "Box",
    "CouplingState",
    "DriverConfig",
    "ExecutionFaultError",
    "GroupMembership",
    "HostParticles",
    "KernelStatus",
    "LaunchConfigurationError",
    "NPTKernelDriver",
    "NPTKernelError",
    "NoseHooverCouplingUpdater",
    "ParticleData",
    "ResourceBindingError",
    "ScalingFactors",
    "ThermoSample",
    "TimeLogger",
    "TwoStepNPT",
    "combine_partial_sums",
]

try:
    __version__ = version("cunpt")
except PackageNotFoundError:
    # Package is not installed
    __version__ = "unknown"
