"""Builders shared by the test modules."""

import numpy as np

from cunpt import ParticleData


def build_host_system(n_particles: int, box_length: float, seed: int = 1):
    """Random positions inside a cubic box with random velocities, masses,
    accelerations and a type tag in position column 3."""
    rng = np.random.default_rng(seed)
    half = 0.5 * box_length
    position = np.zeros((n_particles, 4))
    position[:, :3] = rng.uniform(-half, half, size=(n_particles, 3))
    position[:, 3] = rng.integers(0, 3, size=n_particles)
    velocity = np.zeros((n_particles, 4))
    velocity[:, :3] = rng.normal(0.0, 1.0, size=(n_particles, 3))
    velocity[:, 3] = 7.0
    mass = rng.uniform(0.5, 2.0, size=n_particles)
    acceleration = rng.normal(0.0, 0.5, size=(n_particles, 3))
    image = rng.integers(-2, 3, size=(n_particles, 3)).astype(np.int32)
    return {
        "position": position,
        "velocity": velocity,
        "mass": mass,
        "acceleration": acceleration,
        "image": image,
    }


def build_integer_system(n_particles: int, seed: int = 11):
    """System whose kinetic sums are exact in float64.

    Velocities are small integers and masses are 1-4, so every partial and
    total ``sum(m |v|^2)`` is an integer well below 2**53.
    """
    rng = np.random.default_rng(seed)
    velocity = np.zeros((n_particles, 4))
    velocity[:, :3] = rng.integers(-3, 4, size=(n_particles, 3))
    mass = rng.integers(1, 5, size=n_particles).astype(np.float64)
    virial = rng.integers(-10, 11, size=n_particles).astype(np.float64)
    return {
        "position": np.zeros((n_particles, 4)),
        "velocity": velocity,
        "mass": mass,
        "acceleration": np.zeros((n_particles, 3)),
        "image": np.zeros((n_particles, 3), dtype=np.int32),
        "virial": virial,
    }


def device_particles(host: dict, precision=np.float64) -> ParticleData:
    return ParticleData.from_host(
        position=host["position"],
        velocity=host["velocity"],
        mass=host["mass"],
        acceleration=host["acceleration"],
        image=host["image"],
        precision=precision,
    )
