"""Status codes and exceptions raised by the kernel launch driver."""

from enum import Enum
from typing import Optional


class KernelStatus(Enum):
    """Outcome of a kernel entry point."""

    SUCCESS = 0
    BINDING_FAILURE = 1
    LAUNCH_FAILURE = 2
    EXECUTION_FAULT = 3


class NPTKernelError(RuntimeError):
    """Base class for failures surfaced by :class:`NPTKernelDriver`.

    Parameters
    ----------
    kernel
        Name of the kernel the failure is attributed to.
    message
        Human-readable description.

    Notes
    -----
    The underlying driver or validation error, when there is one, is
    attached as ``__cause__``.
    """

    status: KernelStatus = KernelStatus.LAUNCH_FAILURE

    def __init__(self, kernel: str, message: Optional[str] = None):
        self.kernel = kernel
        if message is None:
            message = self.status.name.lower().replace("_", " ")
        super().__init__(f"{kernel}: {message}")


class ResourceBindingError(NPTKernelError):
    """An input array could not be bound; no kernel work was done."""

    status = KernelStatus.BINDING_FAILURE


class LaunchConfigurationError(NPTKernelError):
    """The execution grid was rejected; no kernel work was done."""

    status = KernelStatus.LAUNCH_FAILURE


class ExecutionFaultError(NPTKernelError):
    """A deferred fault surfaced while synchronising after a launch."""

    status = KernelStatus.EXECUTION_FAULT
