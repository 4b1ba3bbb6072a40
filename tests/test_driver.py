import numpy as np
import pytest
from numba import cuda

import cunpt.driver as driver_module
from cunpt import (
    DriverConfig,
    ExecutionFaultError,
    GroupMembership,
    KernelStatus,
    LaunchConfigurationError,
    NPTKernelDriver,
    ResourceBindingError,
    TimeLogger,
)
from cunpt.cuda_simsafe import CudaAPIError
from tests._utils import device_particles


def _snapshot(particles):
    host = particles.to_host()
    return {
        "position": host.position,
        "velocity": host.velocity,
        "acceleration": host.acceleration,
        "image": host.image,
    }


def _assert_unchanged(particles, before):
    after = _snapshot(particles)
    for name, array in before.items():
        np.testing.assert_array_equal(after[name], array, err_msg=name)


# ========================================
# Configuration
# ========================================


@pytest.mark.parametrize(
    "kwargs, error",
    [
        ({"block_size": 48}, ValueError),
        ({"block_size": 2048}, ValueError),
        ({"block_size": 32.0}, TypeError),
        ({"precision": np.int32}, ValueError),
        ({"checked": "yes"}, TypeError),
    ],
)
def test_driver_config_validation(kwargs, error):
    with pytest.raises(error):
        DriverConfig(**kwargs)


def test_driver_config_accepts_dtype_strings():
    config = DriverConfig(precision="float32", block_size=256)
    assert config.precision is np.float32
    assert not config.checked


def test_driver_properties(checked_driver):
    assert checked_driver.precision is np.float64
    assert checked_driver.block_size == 32
    assert checked_driver.checked


def test_num_blocks_for(driver):
    assert driver.num_blocks_for(0) == 1
    assert driver.num_blocks_for(32) == 1
    assert driver.num_blocks_for(33) == 2
    assert driver.num_blocks_for(33, block_size=8) == 5


def test_allocate_partial_sums(driver):
    partials = driver.allocate_partial_sums(4)
    assert partials.shape == (4,)
    assert partials.dtype == np.float64
    np.testing.assert_array_equal(partials.copy_to_host(), 0.0)
    with pytest.raises(ValueError):
        driver.allocate_partial_sums(0)


# ========================================
# Resource binding
# ========================================


def test_precision_mismatch(host_system, full_group):
    particles = device_particles(host_system, precision=np.float32)
    driver = NPTKernelDriver(precision=np.float64, block_size=32)
    with pytest.raises(ResourceBindingError) as exc:
        driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    assert exc.value.status is KernelStatus.BINDING_FAILURE
    assert exc.value.kernel == "step_one"
    assert str(exc.value).startswith("step_one:")


def test_group_built_for_other_system(driver, particles, n_particles):
    before = _snapshot(particles)
    stale = GroupMembership.all(n_particles + 5)
    with pytest.raises(ResourceBindingError, match="live"):
        driver.step_one(particles, stale, 0.1, 0.1, 0.01)
    _assert_unchanged(particles, before)


def test_not_a_group(driver, particles):
    with pytest.raises(ResourceBindingError, match="GroupMembership"):
        driver.step_one(particles, [0, 1, 2], 0.0, 0.0, 0.01)


def test_not_particle_data(driver, full_group, host_system):
    with pytest.raises(ResourceBindingError, match="ParticleData"):
        driver.step_one(host_system, full_group, 0.0, 0.0, 0.01)


def test_not_a_box(driver, particles):
    with pytest.raises(ResourceBindingError, match="Box"):
        driver.box_rescale(particles, (10.0, 10.0, 10.0), 0.0, 0.01)


@pytest.mark.parametrize(
    "make_force",
    [
        pytest.param(lambda n: np.zeros((n - 1, 3)), id="too_few_rows"),
        pytest.param(lambda n: np.zeros((n, 2)), id="too_few_columns"),
        pytest.param(lambda n: np.zeros(3 * n), id="flat"),
        pytest.param(lambda n: np.zeros((n, 3), dtype=complex), id="complex"),
        pytest.param(
            lambda n: cuda.to_device(np.zeros((n, 3), dtype=np.float32)),
            id="device_float32",
        ),
    ],
)
def test_bad_force_array(driver, particles, full_group, n_particles,
                         make_force):
    before = _snapshot(particles)
    with pytest.raises(ResourceBindingError) as exc:
        driver.step_two(particles, full_group, make_force(n_particles),
                        0.1, 0.1, 0.01)
    assert exc.value.kernel == "step_two"
    _assert_unchanged(particles, before)


def test_host_force_is_cast(driver, particles, full_group, n_particles,
                            host_system):
    force = np.ones((n_particles + 3, 4), dtype=np.int64)
    status = driver.step_two(particles, full_group, force, 0.0, 0.0, 0.01)
    assert status is KernelStatus.SUCCESS
    np.testing.assert_allclose(
        particles.to_host().acceleration,
        1.0 / host_system["mass"][:, None] * np.ones((n_particles, 3)),
    )


def test_partials_must_live_on_device(driver, particles, full_group):
    with pytest.raises(ResourceBindingError, match="device"):
        driver.group_temperature_reduce(np.zeros(4), particles, full_group)


def test_partials_dtype(driver, particles, full_group):
    partials = cuda.to_device(np.zeros(4, dtype=np.float32))
    with pytest.raises(ResourceBindingError, match="1-D"):
        driver.group_temperature_reduce(partials, particles, full_group)


def test_empty_group_warns(driver, particles, n_particles):
    before = _snapshot(particles)
    with pytest.warns(UserWarning, match="empty"):
        status = driver.step_one(
            particles, GroupMembership([], n_particles), 0.3, 0.1, 0.01
        )
    assert status is KernelStatus.SUCCESS
    _assert_unchanged(particles, before)


# ========================================
# Launch configuration
# ========================================


@pytest.mark.parametrize(
    "block_size, num_blocks, match",
    [
        (0, None, "block_size"),
        (2048, None, "block_size"),
        (32, 0, "num_blocks"),
        (8, 2, "cover"),
    ],
)
def test_bad_grid(driver, particles, full_group, block_size, num_blocks,
                  match):
    before = _snapshot(particles)
    with pytest.raises(LaunchConfigurationError, match=match) as exc:
        driver.step_one(particles, full_group, 0.0, 0.0, 0.01,
                        block_size=block_size, num_blocks=num_blocks)
    assert exc.value.status is KernelStatus.LAUNCH_FAILURE
    _assert_unchanged(particles, before)


def test_oversized_grid_is_harmless(driver, particles, full_group,
                                    host_system):
    driver.step_one(particles, full_group, 0.0, 0.0, 0.0,
                    block_size=4, num_blocks=40)
    np.testing.assert_array_equal(
        particles.to_host().position, host_system["position"]
    )


class _RejectedKernel:
    def __getitem__(self, grid):
        def launch(*args):
            raise CudaAPIError(1, "too many resources requested for launch")

        return launch


class _RejectingFactory:
    name = "step_one"
    kernel = _RejectedKernel()


def test_driver_rejection_is_a_launch_failure(driver, particles, full_group,
                                              monkeypatch):
    monkeypatch.setattr(driver, "_step_one", _RejectingFactory())
    with pytest.raises(LaunchConfigurationError, match="rejected") as exc:
        driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    assert isinstance(exc.value.__cause__, CudaAPIError)


# ========================================
# Checked mode
# ========================================


@pytest.fixture(scope="function")
def sync_calls(monkeypatch):
    calls = []
    monkeypatch.setattr(
        driver_module.cuda, "synchronize", lambda: calls.append(1)
    )
    return calls


def test_unchecked_mode_does_not_synchronise(driver, particles, full_group,
                                             sync_calls):
    driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    assert sync_calls == []


def test_checked_mode_synchronises(checked_driver, particles, full_group,
                                   box, sync_calls):
    checked_driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    checked_driver.box_rescale(particles, box, 0.0, 0.01)
    assert len(sync_calls) == 2


def test_checked_mode_reports_deferred_fault(checked_driver, particles,
                                             full_group, monkeypatch):
    def fault():
        raise CudaAPIError(700, "an illegal memory access was encountered")

    monkeypatch.setattr(driver_module.cuda, "synchronize", fault)
    with pytest.raises(ExecutionFaultError) as exc:
        checked_driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    assert exc.value.status is KernelStatus.EXECUTION_FAULT
    assert exc.value.kernel == "step_one"
    assert isinstance(exc.value.__cause__, CudaAPIError)


# ========================================
# Timing events
# ========================================


def test_kernels_compile_once(driver, particles, full_group, time_logger):
    for _ in range(3):
        driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    assert time_logger.count_events("compile_step_one") == 1
    assert time_logger.count_events("launch_step_one") == 0


def test_reduction_recompiles_for_new_block_size(driver, particles,
                                                 full_group, time_logger):
    partials = driver.allocate_partial_sums(8)
    driver.group_temperature_reduce(partials, particles, full_group)
    driver.group_temperature_reduce(partials, particles, full_group,
                                    block_size=8)
    driver.group_temperature_reduce(partials, particles, full_group,
                                    block_size=8)
    assert time_logger.count_events("compile_group_temperature_reduce") == 2


def test_verbose_logger_records_launches(particles, full_group, capsys):
    logger = TimeLogger(verbosity="verbose")
    driver = NPTKernelDriver(block_size=32, time_logger=logger)
    driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    driver.step_one(particles, full_group, 0.0, 0.0, 0.01)

    assert logger.count_events("launch_step_one") == 2
    start = next(
        event for event in logger.events
        if event.name == "launch_step_one" and event.event_type == "start"
    )
    assert start.metadata["block_size"] == 32
    assert start.metadata["num_blocks"] == 2
    assert start.metadata["category"] == "launch"
    assert "launch_step_one" in capsys.readouterr().out


def test_failed_launch_closes_timing_event(particles, full_group,
                                           monkeypatch):
    logger = TimeLogger(verbosity="verbose")
    driver = NPTKernelDriver(block_size=32, time_logger=logger)
    monkeypatch.setattr(driver, "_step_one", _RejectingFactory())
    with pytest.raises(LaunchConfigurationError):
        driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    assert logger.open_events == ()
    assert logger.count_events("launch_step_one") == 1


def test_deferred_fault_closes_timing_event(particles, full_group,
                                            monkeypatch):
    def fault():
        raise CudaAPIError(700, "an illegal memory access was encountered")

    logger = TimeLogger(verbosity="debug")
    driver = NPTKernelDriver(block_size=32, checked=True, time_logger=logger)
    monkeypatch.setattr(driver_module.cuda, "synchronize", fault)
    with pytest.raises(ExecutionFaultError):
        driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    assert logger.open_events == ()


def test_timings_by_category(driver, particles, full_group, box):
    driver.step_one(particles, full_group, 0.0, 0.0, 0.01)
    driver.box_rescale(particles, box, 0.0, 0.01)
    assert set(driver.timings("compile")) == {
        "compile_step_one",
        "compile_box_rescale",
    }
    assert driver.timings("launch") == {}


# ========================================
# Box scaling limits
# ========================================


@pytest.mark.parametrize("eta", [-1e6, 1e6], ids=["underflow", "overflow"])
def test_unscalable_box_is_a_launch_failure(driver, particles, box, eta):
    before = _snapshot(particles)
    with pytest.raises(LaunchConfigurationError, match="scaled") as exc:
        driver.box_rescale(particles, box, eta, 1.0)
    assert exc.value.kernel == "box_rescale"
    assert isinstance(exc.value.__cause__, (ValueError, OverflowError))
    _assert_unchanged(particles, before)
