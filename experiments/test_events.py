"""
Tests for event scheduling.

Validates:
- Time ordering and insertion order ties in the event queue
- Lazy discarding of stale events
- Rate-proportional event selection and exponential waiting times
"""

from types import SimpleNamespace

import numpy as np

from osckmc.kmc.efficient_updates import select_event
from osckmc.kmc.events import Event, EventQueue, EventType


def _event(time: float, particle_id: int | None = 0, stamp: int = 0) -> Event:
    return Event(EventType.POLARON_HOP, particle_id, stamp, rate=1.0, time=time)


def test_queue_ordering():
    """Events pop in time order, ties in insertion order."""
    queue = EventQueue()
    first = _event(1.0, particle_id=1)
    second = _event(1.0, particle_id=2)
    queue.push(_event(3.0))
    queue.push(first)
    queue.push(second)
    queue.push(_event(0.5))

    assert len(queue) == 4
    assert queue.peek_time() == 0.5

    times = []
    popped = []
    while (event := queue.pop_valid(lambda e: True)) is not None:
        times.append(event.time)
        popped.append(event)

    assert times == [0.5, 1.0, 1.0, 3.0]
    assert popped[1] is first and popped[2] is second
    assert queue.peek_time() is None

    print("✓ Queue ordering test passed")


def test_stale_events_discarded():
    """Events whose stamp no longer matches are skipped and counted."""
    queue = EventQueue()
    stamps = {0: 2}
    queue.push(_event(1.0, stamp=0))
    queue.push(_event(2.0, stamp=1))
    queue.push(_event(3.0, stamp=2))

    event = queue.pop_valid(lambda e: e.stamp == stamps[e.particle_id])

    assert event is not None and event.time == 3.0
    assert queue.n_discarded == 2
    assert queue.pop_valid(lambda e: True) is None

    print("✓ Stale event test passed")


def test_select_event_proportional():
    """Candidates are chosen in proportion to their rates."""
    simulator = SimpleNamespace(rng=np.random.default_rng(0), time=1.0)
    counts = {EventType.POLARON_HOP: 0, EventType.POLARON_EXTRACTION: 0}
    waits = []

    for _ in range(4000):
        candidates = [
            Event(EventType.POLARON_HOP, 0, 0, rate=1.0),
            Event(EventType.POLARON_EXTRACTION, 0, 0, rate=3.0),
        ]
        event = select_event(simulator, candidates)
        counts[event.event_type] += 1
        waits.append(event.time - simulator.time)

    fraction = counts[EventType.POLARON_EXTRACTION] / 4000
    print(f"Extraction fraction: {fraction:.3f} (expected 0.75)")
    print(f"Mean wait: {np.mean(waits):.3f} (expected 0.25)")

    assert abs(fraction - 0.75) < 0.03
    assert abs(np.mean(waits) - 0.25) < 0.02
    assert min(waits) > 0

    print("✓ Event selection test passed")
