"""Kernel factories for the two-step Nosé-Hoover NPT integrator."""

from cunpt.kernels.base import (
    KernelOutput,
    ReductionKernelConfig,
    StepKernelConfig,
)
from cunpt.kernels.step_one import StepOneKernel
from cunpt.kernels.step_two import StepTwoKernel
from cunpt.kernels.box_rescale import BoxRescaleKernel
from cunpt.kernels.reductions import (
    GroupTemperatureReduction,
    PressureReduction,
    build_block_sum,
)

__all__ = [
    "BoxRescaleKernel",
    "GroupTemperatureReduction",
    "KernelOutput",
    "PressureReduction",
    "ReductionKernelConfig",
    "StepKernelConfig",
    "StepOneKernel",
    "StepTwoKernel",
    "build_block_sum",
]
