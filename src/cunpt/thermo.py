"""Cross-block combination of partial sums and derived thermodynamics."""

from math import fsum

import numpy as np
from attrs import define
from numpy.typing import ArrayLike

from cunpt.cuda_simsafe import is_cuda_array


def combine_partial_sums(partials: ArrayLike, num_blocks: int) -> float:
    """Sum the first ``num_blocks`` per-block partial sums.

    Parameters
    ----------
    partials
        Host or device array with one slot per launched block. Slots past
        ``num_blocks`` were not written by the last launch and are ignored.
    num_blocks
        Number of blocks in the launch that filled ``partials``.

    Returns
    -------
    float
        The correctly rounded sum of the slots, computed with
        :func:`math.fsum`. The result does not depend on the order the
        blocks are merged in, so it is identical for any permutation of the
        partials.

    Raises
    ------
    ValueError
        If ``num_blocks`` is negative or larger than the buffer.
    """
    if is_cuda_array(partials):
        partials = partials.copy_to_host()
    partials = np.asarray(partials)
    if num_blocks < 0 or num_blocks > partials.shape[0]:
        raise ValueError(
            f"num_blocks={num_blocks} does not fit a buffer of "
            f"{partials.shape[0]} slots"
        )
    return fsum(float(value) for value in partials[:num_blocks])


@define(frozen=True)
class ThermoSample:
    """Reduced kinetic and virial sums for one step.

    Attributes
    ----------
    two_k_group
        Twice the kinetic energy of the integration group.
    two_k_all
        Twice the kinetic energy of every particle.
    virial
        Sum of the per-particle virial over every particle.
    volume
        Box volume the sums were taken in.
    n_group
        Number of particles in the integration group.
    n_particles
        Total number of particles.
    """

    two_k_group: float
    two_k_all: float
    virial: float
    volume: float
    n_group: int
    n_particles: int

    @property
    def temperature(self) -> float:
        """Group temperature in energy units, ``2K / (3 N_group)``."""
        if self.n_group == 0:
            return 0.0
        return self.two_k_group / (3.0 * self.n_group)

    @property
    def pressure(self) -> float:
        """Instantaneous pressure, ``(2K / 3 + W) / V``."""
        return (self.two_k_all / 3.0 + self.virial) / self.volume
