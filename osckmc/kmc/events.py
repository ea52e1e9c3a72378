"""
Event definitions and scheduling for KMC simulation.

This module defines the event types of the film (polaron hops, recombination,
extraction, exciton hops, dissociation, decay, spin flips, annihilation and
exciton generation) and the global time-ordered event queue. Each live
particle has at most one scheduled event; stale events are discarded lazily
when popped.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from .lattice import Coords

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of events in the KMC simulation."""

    POLARON_HOP = "polaron_hop"
    POLARON_RECOMBINATION = "polaron_recombination"
    POLARON_EXTRACTION = "polaron_extraction"
    EXCITON_HOP = "exciton_hop"
    EXCITON_DISSOCIATION = "exciton_dissociation"
    EXCITON_DECAY = "exciton_decay"
    EXCITON_INTERSYSTEM_CROSSING = "exciton_isc"
    EXCITON_REVERSE_INTERSYSTEM_CROSSING = "exciton_risc"
    EXCITON_EXCITON_ANNIHILATION = "exciton_exciton_annihilation"
    EXCITON_POLARON_ANNIHILATION = "exciton_polaron_annihilation"
    EXCITON_CREATION = "exciton_creation"


@dataclass
class Event:
    """
    Represents a single scheduled KMC event.

    Attributes:
        event_type: Type of the event.
        particle_id: Owning particle (None for exciton generation).
        stamp: Owner state version at scheduling time.
        rate: Event rate (Hz).
        dest_site: Destination site index (hops, dissociation, annihilation, recombination).
        dest_coords: Destination coordinates.
        offset: Unwrapped offset from the owner's site (lattice units).
        target_id: Partner particle (recombination and annihilation).
        time: Absolute scheduled execution time (s).
    """

    event_type: EventType
    particle_id: int | None
    stamp: int
    rate: float = 0.0
    dest_site: int | None = None
    dest_coords: Coords | None = None
    offset: tuple[int, int, int] = (0, 0, 0)
    target_id: int | None = None
    time: float = 0.0

    def __repr__(self) -> str:
        """String representation."""
        if self.dest_coords is not None:
            return (
                f"Event({self.event_type.value}, particle={self.particle_id}, "
                f"dest={self.dest_coords}, t={self.time:.3e}, rate={self.rate:.2e})"
            )
        return (
            f"Event({self.event_type.value}, particle={self.particle_id}, "
            f"t={self.time:.3e}, rate={self.rate:.2e})"
        )


class EventQueue:
    """
    Global priority queue of scheduled events.

    Events are ordered by absolute time, ties broken by insertion order.
    Invalidated events stay in the heap and are dropped on pop.
    """

    def __init__(self) -> None:
        """Initialize empty event queue."""
        self._heap: list[tuple[float, int, Event]] = []
        self._counter = itertools.count()
        self.n_discarded = 0

    def push(self, event: Event) -> None:
        """
        Schedule an event.

        Args:
            event: Event with its absolute time set.
        """
        heapq.heappush(self._heap, (event.time, next(self._counter), event))

    def pop_valid(self, is_valid: Callable[[Event], bool]) -> Event | None:
        """
        Pop the earliest event that is still valid.

        Args:
            is_valid: Predicate telling whether an event is current.

        Returns:
            Earliest valid event, or None if the queue runs empty.
        """
        while self._heap:
            _, _, event = heapq.heappop(self._heap)
            if is_valid(event):
                return event
            self.n_discarded += 1
        return None

    def peek_time(self) -> float | None:
        """Time of the earliest queued event (valid or not)."""
        return self._heap[0][0] if self._heap else None

    def clear(self) -> None:
        """Remove all events."""
        self._heap.clear()

    def __len__(self) -> int:
        """Number of queued events, including stale ones."""
        return len(self._heap)

    def __repr__(self) -> str:
        """String representation."""
        return f"EventQueue(n_events={len(self)}, n_discarded={self.n_discarded})"
