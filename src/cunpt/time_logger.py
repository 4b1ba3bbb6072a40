"""Timing records for kernel builds and launches."""

import time
from typing import Any, Optional

import attrs

VERBOSITY_LEVELS = ('default', 'verbose', 'debug')


@attrs.define(frozen=True)
class TimingEvent:
    """One start or stop mark.

    Attributes
    ----------
    name : str
        Event identifier, e.g. ``'compile_step_one'``.
    event_type : str
        ``'start'`` or ``'stop'``.
    timestamp : float
        ``time.perf_counter()`` reading.
    metadata : dict
        Free-form details; ``category`` groups events for aggregation.
    """
    name: str = attrs.field(validator=attrs.validators.instance_of(str))
    event_type: str = attrs.field(
        validator=attrs.validators.in_({'start', 'stop'})
    )
    timestamp: float = attrs.field(
        validator=attrs.validators.instance_of(float)
    )
    metadata: dict = attrs.field(factory=dict)


class TimeLogger:
    """Collects compile and launch timings for a driver and its kernels.

    Parameters
    ----------
    verbosity : str, default='default'
        ``'default'`` records silently. ``'verbose'`` prints one line per
        completed event and ``'debug'`` also prints every start. The driver
        records launch events only above ``'default'``.
    """

    def __init__(self, verbosity: str = 'default') -> None:
        if verbosity not in VERBOSITY_LEVELS:
            raise ValueError(
                f"verbosity must be one of {VERBOSITY_LEVELS}, "
                f"got '{verbosity}'"
            )
        self.verbosity = verbosity
        self.events: list[TimingEvent] = []
        self._open: dict[str, float] = {}

    def _record(self, name: str, event_type: str, metadata: dict) -> float:
        if not name:
            raise ValueError("event name cannot be empty")
        now = time.perf_counter()
        self.events.append(TimingEvent(name, event_type, now, metadata))
        return now

    def start_event(self, event_name: str, **metadata: Any) -> None:
        self._open[event_name] = self._record(event_name, 'start', metadata)
        if self.verbosity == 'debug':
            print(f"[DEBUG] {event_name} started")

    def stop_event(self, event_name: str, **metadata: Any) -> None:
        """Close ``event_name``; a stop with no open start is still kept."""
        now = self._record(event_name, 'stop', metadata)
        started = self._open.pop(event_name, None)
        if started is None or self.verbosity == 'default':
            return
        print(f"{event_name}: {now - started:.3f}s")

    @property
    def open_events(self) -> tuple:
        """Names started but not yet stopped."""
        return tuple(self._open)

    def count_events(self, event_name: str, event_type: str = 'stop') -> int:
        return sum(
            1 for event in self.events
            if event.name == event_name and event.event_type == event_type
        )

    def get_aggregate_durations(
        self, category: Optional[str] = None
    ) -> dict[str, float]:
        """Total time per event name over matched start/stop pairs.

        Only events whose ``metadata['category']`` equals ``category`` are
        considered when one is given.
        """
        totals: dict[str, float] = {}
        starts: dict[str, float] = {}
        for event in self.events:
            if (category is not None
                    and event.metadata.get('category') != category):
                continue
            if event.event_type == 'start':
                starts[event.name] = event.timestamp
            elif event.name in starts:
                elapsed = event.timestamp - starts.pop(event.name)
                totals[event.name] = totals.get(event.name, 0.0) + elapsed
        return totals


default_timelogger = TimeLogger()
