"""Resolves the three detector outputs of one frame into the emitted event list."""

from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional, Tuple

from detectors import NoiseEvent


def resolve_specific(footstep: Optional[NoiseEvent],
                     friction: Optional[NoiseEvent]) -> Tuple[Optional[NoiseEvent], Optional[NoiseEvent], Optional[NoiseEvent]]:
    """Keep only the more confident of a same-frame footstep/friction pair.

    Returns (footstep, friction, dropped). Ties keep the footstep.
    """
    if footstep is None or friction is None:
        return footstep, friction, None
    if footstep.confidence >= friction.confidence:
        return footstep, None, friction
    return None, friction, footstep


def should_run_generic(footstep: Optional[NoiseEvent], friction: Optional[NoiseEvent],
                       friction_sustaining: bool) -> bool:
    """The fallback only runs when no specific detector explains the sound."""
    return not friction_sustaining and footstep is None and friction is None


def arbitrate(footstep: Optional[NoiseEvent], friction: Optional[NoiseEvent],
              generic: Optional[NoiseEvent] = None,
              friction_sustaining: bool = False) -> List[NoiseEvent]:
    """Final 0-2 events for one frame."""
    footstep, friction, _ = resolve_specific(footstep, friction)
    events = [event for event in (footstep, friction) if event is not None]
    if generic is not None and should_run_generic(footstep, friction, friction_sustaining):
        events.append(generic)
    return events


class EventLog:
    """Most recent N events, oldest evicted first."""

    def __init__(self, capacity: int = 50):
        self.capacity = max(1, int(capacity))
        self._events: Deque[NoiseEvent] = deque(maxlen=self.capacity)

    def extend(self, events: Iterable[NoiseEvent]) -> None:
        self._events.extend(events)

    def append(self, event: NoiseEvent) -> None:
        self._events.append(event)

    def recent(self, n: Optional[int] = None) -> List[NoiseEvent]:
        events = list(self._events)
        if n is None:
            return events
        return events[-n:] if n > 0 else []

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[NoiseEvent]:
        return iter(list(self._events))
