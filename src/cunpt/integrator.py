"""Host-side sequencing of one two-step NPT timestep."""

from typing import Callable, Optional, Tuple

from numpy.typing import ArrayLike

from cunpt.coupling import CouplingState, CouplingUpdater
from cunpt.driver import NPTKernelDriver
from cunpt.particles import Box, GroupMembership, ParticleData
from cunpt.thermo import ThermoSample, combine_partial_sums

#: ``force_compute(particles, box) -> (net_force, net_virial)``
ForceCompute = Callable[[ParticleData, Box], Tuple[ArrayLike, ArrayLike]]


class TwoStepNPT:
    """Advance a particle system under Nosé-Hoover NPT coupling.

    Parameters
    ----------
    driver
        Launch driver; its precision must match ``particles``.
    particles
        Device particle arrays, updated in place.
    group
        Particles to integrate. Box rescaling still acts on every particle.
    box
        Box at the start of the run. Replaced by the rescaled box each step.
    dt
        Timestep.
    coupling
        Initial ``xi`` and ``eta``.
    updater
        Advances the coupling from each step's :class:`ThermoSample`. When
        omitted the coupling is held fixed.

    Notes
    -----
    One :meth:`step` runs, in order: step one, box rescale, the caller's
    force evaluation on the rescaled configuration, step two, the group
    temperature and pressure reductions, the host combination of the
    partial sums and finally the coupling update. The partial-sum buffers
    are allocated once for the largest grid this system can need.
    """

    def __init__(
        self,
        driver: NPTKernelDriver,
        particles: ParticleData,
        group: GroupMembership,
        box: Box,
        dt: float,
        coupling: Optional[CouplingState] = None,
        updater: Optional[CouplingUpdater] = None,
    ):
        if dt < 0:
            raise ValueError(f"dt must be non-negative, got {dt}")
        if coupling is None:
            coupling = CouplingState()
        self.driver = driver
        self.particles = particles
        self.group = group
        self.box = box
        self.dt = float(dt)
        self.coupling = coupling
        self.updater = updater
        self.last_sample: Optional[ThermoSample] = None
        self.timestep = 0

        n = particles.n_particles
        self._group_blocks = driver.num_blocks_for(group.size)
        self._all_blocks = driver.num_blocks_for(n)
        self._partial_group_2k = driver.allocate_partial_sums(
            self._group_blocks
        )
        self._partial_2k = driver.allocate_partial_sums(self._all_blocks)
        self._partial_w = driver.allocate_partial_sums(self._all_blocks)

    def step(self, force_compute: ForceCompute) -> ThermoSample:
        """Advance one timestep and return the reduced thermodynamics."""
        driver = self.driver
        particles = self.particles
        group = self.group
        xi = self.coupling.xi
        eta = self.coupling.eta
        dt = self.dt

        driver.step_one(particles, group, xi, eta, dt)
        _, self.box = driver.box_rescale(particles, self.box, eta, dt)
        net_force, net_virial = force_compute(particles, self.box)
        driver.step_two(particles, group, net_force, xi, eta, dt)

        sample = self.compute_thermo(net_virial)
        if self.updater is not None:
            self.coupling = self.updater.update(self.coupling, sample, dt)
        self.last_sample = sample
        self.timestep += 1
        return sample

    def run(self, n_steps: int, force_compute: ForceCompute) -> ThermoSample:
        """Take ``n_steps`` steps; returns the final sample."""
        if n_steps < 1:
            raise ValueError(f"n_steps must be positive, got {n_steps}")
        for _ in range(n_steps):
            sample = self.step(force_compute)
        return sample

    def compute_thermo(self, net_virial: ArrayLike) -> ThermoSample:
        """Reduce kinetic and virial sums for the current state."""
        driver = self.driver
        driver.group_temperature_reduce(
            self._partial_group_2k,
            self.particles,
            self.group,
            num_blocks=self._group_blocks,
        )
        driver.pressure_reduce(
            self._partial_2k,
            self._partial_w,
            self.particles,
            net_virial,
            num_blocks=self._all_blocks,
        )
        return ThermoSample(
            two_k_group=combine_partial_sums(
                self._partial_group_2k, self._group_blocks
            ),
            two_k_all=combine_partial_sums(self._partial_2k, self._all_blocks),
            virial=combine_partial_sums(self._partial_w, self._all_blocks),
            volume=self.box.volume,
            n_group=self.group.size,
            n_particles=self.particles.n_particles,
        )
