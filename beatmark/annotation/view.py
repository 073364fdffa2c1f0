"""Marker view collaborator.

The engine reports every displayed-marker change to a ``MarkerView``
synchronously, inside the call that caused it. A waveform front end
implements the protocol; ``MarkerTable`` just remembers the current state.
"""

from dataclasses import dataclass
from typing import Protocol


class MarkerView(Protocol):
    def add_marker(self, marker_id: str, time: float, kind: str, draggable: bool) -> None: ...

    def update_marker(self, marker_id: str, time: float, kind: str) -> None: ...

    def remove_marker(self, marker_id: str) -> None: ...

    def update_segment(self, segment_id: str, start_time: float, end_time: float, label: str) -> None: ...

    def remove_segment(self, segment_id: str) -> None: ...


class NullMarkerView:
    """Discards all marker updates."""

    def add_marker(self, marker_id, time, kind, draggable):
        pass

    def update_marker(self, marker_id, time, kind):
        pass

    def remove_marker(self, marker_id):
        pass

    def update_segment(self, segment_id, start_time, end_time, label):
        pass

    def remove_segment(self, segment_id):
        pass


@dataclass
class Marker:
    time: float
    kind: str  # "beat" | "tempoChange" | "auto"
    draggable: bool


@dataclass
class Segment:
    start_time: float
    end_time: float
    label: str


class MarkerTable:
    """In-memory view that tracks which markers and segments are shown."""

    def __init__(self) -> None:
        self.markers: dict[str, Marker] = {}
        self.segments: dict[str, Segment] = {}

    def add_marker(self, marker_id: str, time: float, kind: str, draggable: bool) -> None:
        if marker_id in self.markers:
            raise KeyError(f"marker {marker_id} already shown")
        self.markers[marker_id] = Marker(time=time, kind=kind, draggable=draggable)

    def update_marker(self, marker_id: str, time: float, kind: str) -> None:
        marker = self.markers[marker_id]
        marker.time = time
        marker.kind = kind

    def remove_marker(self, marker_id: str) -> None:
        del self.markers[marker_id]

    def update_segment(self, segment_id: str, start_time: float, end_time: float, label: str) -> None:
        self.segments[segment_id] = Segment(start_time=start_time, end_time=end_time, label=label)

    def remove_segment(self, segment_id: str) -> None:
        self.segments.pop(segment_id, None)

    def times(self, kind: str | None = None) -> list[float]:
        """Sorted times of shown markers, optionally of one kind."""
        return sorted(m.time for m in self.markers.values() if kind is None or m.kind == kind)
