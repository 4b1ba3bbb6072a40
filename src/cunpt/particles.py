"""Particle, group-membership and box containers consumed by the kernels.

``ParticleData`` owns the device-resident per-particle arrays, mirroring the
layout the kernels index into:

- ``position``: ``(N, 4)``; columns 0-2 are coordinates, column 3 carries
  the particle type and is never modified by the integrator.
- ``velocity``: ``(N, 4)``; column 3 is unused and passed through.
- ``acceleration``: ``(N, 3)``.
- ``mass``: ``(N,)``.
- ``image``: ``(N, 3)`` int32 periodic-image counters.

Kernels mutate these arrays in place but never reallocate them.
"""

from typing import Optional, Sequence

import numpy as np
from attrs import define, field, validators
from numba import cuda
from numpy.typing import ArrayLike, NDArray

from cunpt._utils import (
    PrecisionDType,
    precision_converter,
    precision_validator,
)


def _as_columns(
    array: ArrayLike,
    name: str,
    n_particles: int,
    width: int,
    dtype,
    pad_to: Optional[int] = None,
) -> NDArray:
    """Return ``array`` as a C-contiguous ``(n_particles, width)`` array.

    When ``pad_to`` is given, a ``(n_particles, pad_to - 1)`` input is padded
    with a trailing column of zeros.
    """
    array = np.asarray(array, dtype=dtype)
    if array.ndim != 2 or array.shape[0] != n_particles:
        raise ValueError(
            f"{name} must have shape ({n_particles}, {width}), "
            f"got {array.shape}"
        )
    if pad_to is not None and array.shape[1] == pad_to - 1:
        padded = np.zeros((n_particles, pad_to), dtype=dtype)
        padded[:, : pad_to - 1] = array
        array = padded
    if array.shape[1] != width:
        raise ValueError(
            f"{name} must have shape ({n_particles}, {width}), "
            f"got {array.shape}"
        )
    return np.ascontiguousarray(array)


@define(frozen=True)
class HostParticles:
    """Host-side snapshot of every per-particle array."""

    position: NDArray
    velocity: NDArray
    acceleration: NDArray
    mass: NDArray
    image: NDArray

    @property
    def n_particles(self) -> int:
        return self.mass.shape[0]


@define
class ParticleData:
    """Device-resident particle arrays indexed by particle id.

    Build instances with :meth:`from_host`; the constructor expects arrays
    that are already on the device with consistent shapes.
    """

    position: object = field(eq=False)
    velocity: object = field(eq=False)
    acceleration: object = field(eq=False)
    mass: object = field(eq=False)
    image: object = field(eq=False)
    precision: PrecisionDType = field(
        default=np.float64,
        converter=precision_converter,
        validator=precision_validator,
    )

    @classmethod
    def from_host(
        cls,
        position: ArrayLike,
        velocity: ArrayLike,
        mass: ArrayLike,
        acceleration: Optional[ArrayLike] = None,
        image: Optional[ArrayLike] = None,
        precision: PrecisionDType = np.float64,
    ) -> "ParticleData":
        """Validate host arrays, cast them and copy them to the device.

        Parameters
        ----------
        position, velocity
            ``(N, 3)`` or ``(N, 4)`` arrays. Three-column inputs receive a
            zero fourth column.
        mass
            ``(N,)`` strictly positive masses.
        acceleration
            ``(N, 3)``; zeros when omitted.
        image
            ``(N, 3)`` integer image counters; zeros when omitted.
        precision
            ``float32`` or ``float64`` working precision.
        """
        precision = precision_converter(precision)
        mass = np.ascontiguousarray(np.asarray(mass, dtype=precision))
        if mass.ndim != 1:
            raise ValueError(f"mass must be one-dimensional, got {mass.shape}")
        if np.any(mass <= 0):
            raise ValueError("mass must be strictly positive")
        n = mass.shape[0]

        position = _as_columns(position, "position", n, 4, precision, pad_to=4)
        velocity = _as_columns(velocity, "velocity", n, 4, precision, pad_to=4)
        if acceleration is None:
            acceleration = np.zeros((n, 3), dtype=precision)
        acceleration = _as_columns(acceleration, "acceleration", n, 3,
                                   precision)
        if image is None:
            image = np.zeros((n, 3), dtype=np.int32)
        image = np.asarray(image)
        if not np.issubdtype(image.dtype, np.integer):
            raise TypeError(
                f"image counters must be integers, got dtype {image.dtype}"
            )
        image = _as_columns(image, "image", n, 3, np.int32)

        return cls(
            position=cuda.to_device(position),
            velocity=cuda.to_device(velocity),
            acceleration=cuda.to_device(acceleration),
            mass=cuda.to_device(mass),
            image=cuda.to_device(image),
            precision=precision,
        )

    @property
    def n_particles(self) -> int:
        return self.mass.shape[0]

    def to_host(self) -> HostParticles:
        """Copy every device array back to the host."""
        return HostParticles(
            position=self.position.copy_to_host(),
            velocity=self.velocity.copy_to_host(),
            acceleration=self.acceleration.copy_to_host(),
            mass=self.mass.copy_to_host(),
            image=self.image.copy_to_host(),
        )


def _members_converter(value: ArrayLike) -> NDArray:
    array = np.asarray(value)
    if array.size == 0:
        return np.zeros(0, dtype=np.int32)
    if not np.issubdtype(array.dtype, np.integer):
        raise TypeError(
            f"group members must be integers, got dtype {array.dtype}"
        )
    return np.array(array, dtype=np.int32)


@define(frozen=True)
class GroupMembership:
    """Ordered, duplicate-free list of particle indices to integrate.

    Uniqueness is checked on construction: no two entries may name the same
    particle, so one thread per entry never races another thread's writes.
    Instances are frozen; build a new group to change membership.
    """

    members: NDArray = field(converter=_members_converter, eq=False)
    n_particles: int = field(converter=int, validator=validators.ge(0))
    _device_members: object = field(
        default=None, init=False, repr=False, eq=False
    )

    def __attrs_post_init__(self):
        members = self.members
        if members.ndim != 1:
            raise ValueError(
                f"group members must be one-dimensional, got {members.shape}"
            )
        if members.size == 0:
            return
        if members.min() < 0 or members.max() >= self.n_particles:
            raise ValueError(
                f"group members must lie in [0, {self.n_particles})"
            )
        if np.unique(members).size != members.size:
            raise ValueError("group members must be unique")
        members.flags.writeable = False

    @classmethod
    def all(cls, n_particles: int) -> "GroupMembership":
        """Group containing every particle in id order."""
        return cls(np.arange(n_particles, dtype=np.int32), n_particles)

    @classmethod
    def from_indices(
        cls, indices: Sequence[int], n_particles: int
    ) -> "GroupMembership":
        return cls(indices, n_particles)

    @property
    def size(self) -> int:
        return int(self.members.shape[0])

    @property
    def device_members(self):
        """Device copy of the member list, transferred on first use."""
        if self._device_members is None:
            object.__setattr__(
                self, "_device_members", cuda.to_device(self.members)
            )
        return self._device_members


def _lengths_converter(value: ArrayLike) -> tuple:
    return tuple(float(length) for length in value)


def _lengths_validator(instance, attribute, value):
    if len(value) != 3:
        raise ValueError(f"{attribute.name} must have 3 entries, got {value}")
    if any(not length > 0.0 for length in value):
        raise ValueError(f"{attribute.name} must be positive, got {value}")


@define(frozen=True)
class Box:
    """Orthorhombic periodic box centred on the origin.

    ``inverse_lengths`` is derived from ``lengths`` when the box is built and
    a box is never modified afterwards, so the two can not disagree. A
    rescale produces a new ``Box`` via :meth:`scaled`.
    """

    lengths: tuple = field(
        converter=_lengths_converter, validator=_lengths_validator
    )
    inverse_lengths: tuple = field(init=False)

    def __attrs_post_init__(self):
        object.__setattr__(
            self,
            "inverse_lengths",
            tuple(1.0 / length for length in self.lengths),
        )

    @classmethod
    def cube(cls, length: float) -> "Box":
        return cls((length, length, length))

    @property
    def volume(self) -> float:
        lx, ly, lz = self.lengths
        return lx * ly * lz

    def scaled(self, factor: float) -> "Box":
        """Return a new box with every length multiplied by ``factor``."""
        return Box(tuple(length * factor for length in self.lengths))

    def as_array(self, precision: PrecisionDType = np.float64) -> NDArray:
        """Lengths as a ``(3,)`` array in ``precision``."""
        return np.asarray(self.lengths, dtype=precision)
