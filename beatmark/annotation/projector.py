"""Viewport-scoped projection of inferred beat markers."""

import itertools
import logging

from beatmark.annotation.models import AutoBeat, FixedTempo, TappedTempo, TempoRegion
from beatmark.annotation.view import MarkerView, NullMarkerView
from beatmark.config import settings

logger = logging.getLogger(__name__)


def auto_beat_times(region: TempoRegion, merge_tolerance: float = settings.merge_tolerance) -> list[float]:
    """All inferred beat times of a region, ignoring any viewport.

    Markers stop ``merge_tolerance`` periods short of the next user beat
    (tapped) or of the region end, so they never crowd a real beat.
    """
    tempo = region.tempo
    times: list[float] = []
    if isinstance(tempo, TappedTempo):
        if tempo.value is None:
            return times
        period = tempo.value.mean_period
        margin = merge_tolerance * period
        beats = region.user_beats
        for i, beat in enumerate(beats):
            up_to = beats[i + 1].time if i < len(beats) - 1 else region.end_time
            k = 1
            t = beat.time + period
            while t < up_to - margin:
                times.append(t)
                k += 1
                t = beat.time + k * period
    elif isinstance(tempo, FixedTempo):
        period = tempo.period
        margin = merge_tolerance * period
        origin = region.start_time + tempo.phase_offset
        k = 0
        t = origin
        while t < region.end_time - margin:
            if t >= region.start_time:
                times.append(t)
            k += 1
            t = origin + k * period
    else:
        raise TypeError(f"unknown tempo variant: {tempo!r}")
    return times


class AutoBeatProjector:
    """Keeps ``auto_beats`` filled for regions near the visible window.

    Regions intersecting the viewport widened by ``draw_buffer`` on both
    sides get markers; all others are emptied. Existing ``AutoBeat``
    objects are reused in order so that shifting markers keep their ids.
    """

    def __init__(
        self,
        duration: float,
        view: MarkerView | None = None,
        draw_buffer: float = settings.draw_buffer_seconds,
        merge_tolerance: float = settings.merge_tolerance,
    ):
        self.duration = duration
        self.view = view if view is not None else NullMarkerView()
        self.draw_buffer = draw_buffer
        self.merge_tolerance = merge_tolerance
        self.viewport: tuple[float, float] = (0.0, 0.0)
        self._ids = itertools.count(1)

    def draw_window(self) -> tuple[float, float]:
        start, end = self.viewport
        return max(start - self.draw_buffer, 0.0), min(end + self.draw_buffer, self.duration)

    def set_viewport(self, start_time: float, end_time: float) -> bool:
        """Store a new viewport; returns False if it is unchanged."""
        if (start_time, end_time) == self.viewport:
            return False
        self.viewport = (start_time, end_time)
        return True

    def in_window(self, region: TempoRegion) -> bool:
        draw_start, draw_end = self.draw_window()
        return draw_start <= region.end_time and region.start_time < draw_end

    def project(self, regions: list[TempoRegion], touched: list[TempoRegion] | None = None) -> None:
        """Refresh auto beats of ``touched`` regions (all if None) in the window."""
        touched_ids = None if touched is None else {r.id for r in touched}
        for region in regions:
            if not self.in_window(region):
                self.clear(region)
            elif touched_ids is None or region.id in touched_ids:
                self.refresh(region)

    def refresh(self, region: TempoRegion) -> None:
        draw_start, draw_end = self.draw_window()
        recycled = region.auto_beats
        placed: list[AutoBeat] = []
        for t in auto_beat_times(region, self.merge_tolerance):
            if t < draw_start or draw_end <= t:
                continue
            if len(placed) < len(recycled):
                beat = recycled[len(placed)]
                beat.region_index = region.index
                if beat.time != t:
                    beat.time = t
                    self.view.update_marker(beat.marker_id, t, "auto")
            else:
                beat = AutoBeat(id=next(self._ids), time=t, region_index=region.index)
                self.view.add_marker(beat.marker_id, t, "auto", False)
            placed.append(beat)
        for surplus in recycled[len(placed):]:
            self.view.remove_marker(surplus.marker_id)
        region.auto_beats = placed
        logger.debug(f"Region {region.id}: {len(placed)} auto beats "
                     f"in [{draw_start:.2f}, {draw_end:.2f})")

    def clear(self, region: TempoRegion) -> None:
        for beat in region.auto_beats:
            self.view.remove_marker(beat.marker_id)
        region.auto_beats = []
