"""Base classes for constructing cached CUDA kernels with Numba."""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Set, Tuple

from attrs import define, field, fields, has, Attribute
from numpy import dtype as np_dtype
from numba import from_dtype

from cunpt._utils import (
    in_attr,
    PrecisionDType,
    precision_validator,
    precision_converter,
)
from cunpt.cuda_simsafe import from_dtype as simsafe_dtype
from cunpt.time_logger import TimeLogger, default_timelogger


@define
class CUDAFactoryConfig:
    """Base class for compile-critical settings of a kernel factory.

    .. warning::

        **All field modifications MUST be done via the :meth:`update` method.**

        Direct attribute assignment bypasses the owning factory, so it
        would keep serving a kernel compiled for stale settings.
    """

    precision: PrecisionDType = field(
        validator=precision_validator, converter=precision_converter
    )
    _field_map: Dict[str, Attribute] = field(
        factory=dict, init=False, repr=False, eq=False
    )

    def __attrs_post_init__(self):
        field_map = {}
        for fld in fields(type(self)):
            if fld.eq is False:
                continue
            field_map[fld.name] = fld
            if fld.alias is not None:
                field_map[fld.alias] = fld
        self._field_map = field_map

    def update(
        self, updates_dict: Optional[dict] = None, **kwargs
    ) -> Tuple[Set[str], Set[str]]:
        """Update configuration fields with new values.

        Parameters
        ----------
        updates_dict
            Mapping of setting names to new values. Keys should be
            non-underscored field names.
        **kwargs
            Additional settings to update.

        Returns
        -------
        tuple[set[str], set[str]]
            recognized: Names of settings that matched known fields.
            changed: Names of settings whose values were updated.

        Notes
        -----
        New values pass through the field's converter and validator, so
        an invalid value raises and leaves the configuration untouched.
        """
        if updates_dict is None:
            updates_dict = {}
        updates_dict = updates_dict.copy()
        updates_dict.update(kwargs)

        recognized = set()
        changed = set()
        for key, value in updates_dict.items():
            fld = self._field_map.get(key)
            if fld is None:
                continue
            recognized.add(key)
            if fld.converter is not None:
                value = fld.converter(value)
            if fld.validator is not None:
                fld.validator(self, fld, value)
            if getattr(self, fld.name) != value:
                setattr(self, fld.name, value)
                changed.add(key)

        return recognized, changed

    @property
    def numba_precision(self) -> type:
        """Return the Numba dtype associated with ``precision``."""

        return from_dtype(np_dtype(self.precision))

    @property
    def simsafe_precision(self) -> type:
        """Return the CUDA-simulator-safe dtype for ``precision``."""

        return simsafe_dtype(np_dtype(self.precision))


@define
class KernelCache:
    """Base class for the outputs cached by a :class:`CUDAFactory`."""

    pass


class CUDAFactory(ABC):
    """Factory for creating and caching CUDA kernels.

    Subclasses implement :meth:`build` to construct Numba CUDA kernels.
    Compile settings are stored as attrs classes and any change
    invalidates the cache so the kernel is rebuilt on next access.

    .. warning::

        **All compile settings modifications MUST be done via
        :meth:`update_compile_settings`.**

    Notes
    -----
    Always fetch :attr:`kernel` at the point of use. Holding on to a kernel
    across an :meth:`update_compile_settings` call keeps the old build.
    """

    #: Name reported in timing events and launch errors.
    name = "kernel"

    def __init__(self, time_logger: Optional[TimeLogger] = None):
        self._compile_settings = None
        self._cache_valid = True
        self._cache = None
        if time_logger is None:
            time_logger = default_timelogger
        self._time_logger = time_logger

    @abstractmethod
    def build(self) -> KernelCache:
        """Build and return the cached outputs of this factory."""
        return None

    def setup_compile_settings(self, compile_settings):
        """Attach a container of compile-critical settings to the object.

        Parameters
        ----------
        compile_settings : attrs class
            Settings object used to configure the kernel.

        Notes
        -----
        Any existing settings are replaced.
        """
        if not has(compile_settings):
            raise TypeError(
                "Compile settings must be an attrs class instance."
            )
        self._compile_settings = compile_settings
        self._invalidate_cache()

    @property
    def cache_valid(self):
        """bool: ``True`` if cached outputs are up to date."""

        return self._cache_valid

    @property
    def kernel(self):
        """Return the compiled CUDA kernel."""
        return self.get_cached_output("kernel")

    @property
    def compile_settings(self):
        """Return the current compile settings object."""
        return self._compile_settings

    def update_compile_settings(
        self, updates_dict=None, silent=False, **kwargs
    ) -> Set[str]:
        """Update compile settings with new values.

        Parameters
        ----------
        updates_dict : dict, optional
            Mapping of setting names to new values.
        silent : bool, default=False
            Suppress errors for unrecognised parameters.
        **kwargs
            Additional settings to update.

        Returns
        -------
        set[str]
            Names of settings that were recognised.

        Raises
        ------
        ValueError
            If compile settings have not been set up.
        KeyError
            If an unrecognised parameter is supplied and ``silent`` is
            ``False``.
        """
        if updates_dict is None:
            updates_dict = {}
        updates_dict = updates_dict.copy()
        updates_dict.update(kwargs)
        if updates_dict == {}:
            return set()

        if self._compile_settings is None:
            raise ValueError(
                "Compile settings must be set up using "
                "self.setup_compile_settings before updating."
            )
        recognized, changed = self._compile_settings.update(updates_dict)

        unrecognised = set(updates_dict.keys()) - recognized
        if unrecognised and not silent:
            invalid = ", ".join(sorted(unrecognised))
            raise KeyError(
                f"'{invalid}' is not a valid compile setting for this "
                "object, and so was not updated.",
            )
        if changed:
            self._invalidate_cache()

        return recognized

    def _invalidate_cache(self):
        """Mark cached kernels as invalid."""
        self._cache_valid = False

    def _build(self):
        """Rebuild cached outputs if they are invalid."""
        event_name = f"compile_{self.name}"
        self._time_logger.start_event(event_name, category="compile")
        build_result = self.build()
        self._time_logger.stop_event(event_name, category="compile")

        if not isinstance(build_result, KernelCache):
            raise TypeError(
                "build() must return an attrs class (KernelCache subclass)"
            )

        self._cache = build_result
        self._cache_valid = True

    def get_cached_output(self, output_name):
        """Return a named cached output, rebuilding if needed.

        Raises
        ------
        KeyError
            If ``output_name`` is not present in the cache.
        """
        if not self.cache_valid:
            self._build()
        if self._cache is None:
            raise RuntimeError("Cache has not been initialized by build().")
        if not in_attr(output_name, self._cache):
            raise KeyError(
                f"Output '{output_name}' not found in cached outputs."
            )
        return getattr(self._cache, output_name)

    @property
    def precision(self) -> type:
        """Return the precision dtype used by compiled kernels."""
        return self.compile_settings.precision

    @property
    def numba_precision(self) -> type:
        """Return the Numba dtype used by compiled kernels."""

        return self.compile_settings.numba_precision

    @property
    def simsafe_precision(self) -> type:
        """Return the CUDA-simulator-safe dtype for the kernels."""

        return self.compile_settings.simsafe_precision
