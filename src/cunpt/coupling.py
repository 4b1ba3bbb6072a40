"""Nosé-Hoover coupling variables and the scaling factors derived from them.

The thermostat friction ``xi`` and barostat friction ``eta`` are owned by the
integrator and handed to the kernels by value each step. The kernels only see
the exponential factors computed here:

- ``vel_scale = exp(-(xi + eta) * dt / 4)``, applied twice per half kick
- ``pos_scale = exp(eta * dt / 2)``, dividing the drift
- ``len_scale = exp(eta * dt)``, dilating the box
"""

from math import exp
from typing import Protocol

from attrs import define, field, validators

from cunpt._utils import gttype_validator
from cunpt.thermo import ThermoSample


@define(frozen=True)
class CouplingState:
    """Friction coefficients for one step."""

    xi: float = field(default=0.0, converter=float)
    eta: float = field(default=0.0, converter=float)


@define(frozen=True)
class ScalingFactors:
    """Exponential factors applied by the step and box kernels."""

    vel_scale: float
    pos_scale: float
    len_scale: float

    @classmethod
    def from_coupling(
        cls, xi: float, eta: float, dt: float
    ) -> "ScalingFactors":
        return cls(
            vel_scale=exp(-0.25 * (xi + eta) * dt),
            pos_scale=exp(0.5 * eta * dt),
            len_scale=exp(eta * dt),
        )

    @classmethod
    def from_state(cls, state: CouplingState, dt: float) -> "ScalingFactors":
        return cls.from_coupling(state.xi, state.eta, dt)


class CouplingUpdater(Protocol):
    """Anything that advances the coupling variables from a thermo sample."""

    def update(
        self, coupling: CouplingState, sample: ThermoSample, dt: float
    ) -> CouplingState:
        ...


_positive = gttype_validator((int, float), 0)


@define(frozen=True)
class NoseHooverCouplingUpdater:
    """Explicit first-order update of ``xi`` and ``eta``.

    Parameters
    ----------
    kT
        Target temperature in energy units.
    pressure
        Target pressure.
    tau
        Thermostat coupling time.
    tau_p
        Barostat coupling time.

    Notes
    -----
    ``xi += dt / tau**2 * (T / kT - 1)`` and
    ``eta += dt / tau_p**2 * V / (N * kT) * (P - pressure)``, with ``T`` the
    group temperature and ``P`` the all-particle pressure of ``sample``.
    """

    kT: float = field(validator=_positive)
    pressure: float = field(validator=validators.instance_of((int, float)))
    tau: float = field(validator=_positive)
    tau_p: float = field(validator=_positive)

    def update(
        self, coupling: CouplingState, sample: ThermoSample, dt: float
    ) -> CouplingState:
        xi = coupling.xi + dt / (self.tau * self.tau) * (
            sample.temperature / self.kT - 1.0
        )
        eta = coupling.eta
        if sample.n_particles > 0:
            eta += (
                dt / (self.tau_p * self.tau_p)
                * sample.volume / (sample.n_particles * self.kT)
                * (sample.pressure - self.pressure)
            )
        return CouplingState(xi=xi, eta=eta)
