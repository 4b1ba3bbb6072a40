import os

# Kernels run on the CUDA simulator unless a GPU run is requested
# explicitly with NUMBA_ENABLE_CUDASIM=0.
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from cunpt import (  # noqa: E402
    Box,
    GroupMembership,
    NPTKernelDriver,
    TimeLogger,
)
from tests._utils import build_host_system, device_particles  # noqa: E402

np.set_printoptions(linewidth=120, precision=12)


# ========================================
# FIXTURES
# ========================================


@pytest.fixture(scope="function")
def n_particles(request):
    return getattr(request, "param", 40)


@pytest.fixture(scope="function")
def box_length():
    return 10.0


@pytest.fixture(scope="function")
def host_system(n_particles, box_length):
    return build_host_system(n_particles, box_length)


@pytest.fixture(scope="function")
def particles(host_system):
    return device_particles(host_system)


@pytest.fixture(scope="function")
def box(box_length):
    return Box.cube(box_length)


@pytest.fixture(scope="function")
def full_group(n_particles):
    return GroupMembership.all(n_particles)


@pytest.fixture(scope="function")
def odd_group(n_particles):
    """Every other particle, in reverse order."""
    return GroupMembership(np.arange(n_particles)[::-2].copy(), n_particles)


@pytest.fixture(scope="function")
def time_logger():
    return TimeLogger()


@pytest.fixture(scope="function")
def driver(time_logger):
    return NPTKernelDriver(
        precision=np.float64, block_size=32, time_logger=time_logger
    )


@pytest.fixture(scope="function")
def checked_driver(time_logger):
    return NPTKernelDriver(
        precision=np.float64,
        block_size=32,
        checked=True,
        time_logger=time_logger,
    )
