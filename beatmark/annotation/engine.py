"""Beat annotation engine - owns tempo regions and applies edits to them.

Every public edit runs in a fixed order: structural change, tempo
recompute for the touched regions, auto-beat projection, region overlay
refresh, then the save callback. Edits that would break spacing are
rejected before anything is mutated.
"""

import bisect
import itertools
import logging
import math
from collections.abc import Callable

from beatmark.annotation.models import (
    TEMPO_KINDS,
    FixedTempo,
    SavedRegion,
    SaveObject,
    TappedTempo,
    Tempo,
    TempoRegion,
    UserBeat,
    tempo_kind,
)
from beatmark.annotation.projector import AutoBeatProjector, auto_beat_times
from beatmark.annotation.tempo import (
    estimate_phase_offset,
    estimate_tapped_tempo,
    local_beat_periods,
    tempo_label,
    tempo_period,
)
from beatmark.annotation.view import MarkerView, NullMarkerView
from beatmark.config import Settings, settings

logger = logging.getLogger(__name__)

MOVE_PHASES = ("start", "move", "end")


class InvalidSaveError(ValueError):
    """A save object that violates the region/beat invariants."""


def _beat_time(beat: UserBeat) -> float:
    return beat.time


def _region_start(region: TempoRegion) -> float:
    return region.start_time


class AnnotationEngine:
    """Tempo regions and beats of one track.

    Parameters
    ----------
    duration:
        Track length in seconds.
    save:
        Called with a fresh ``SaveObject`` after every completed edit.
    load_saved:
        ``SaveObject`` (or its dict form) to start from. It is validated as
        a whole before any state is built; ``InvalidSaveError`` otherwise.
    view:
        Receives marker and region overlay updates.
    """

    def __init__(
        self,
        duration: float,
        save: Callable[[SaveObject], None] | None = None,
        load_saved: SaveObject | dict | None = None,
        view: MarkerView | None = None,
        config: Settings | None = None,
    ):
        self.config = config or settings
        self.duration = float(duration)
        self.regions: list[TempoRegion] = []
        self.view = view if view is not None else NullMarkerView()
        self.projector = AutoBeatProjector(
            self.duration,
            self.view,
            draw_buffer=self.config.draw_buffer_seconds,
            merge_tolerance=self.config.merge_tolerance,
        )
        self._on_save = save
        self._region_ids = itertools.count(1)
        self._user_beat_ids = itertools.count(1)
        self._user_beats_by_id: dict[int, UserBeat] = {}
        self._selected_region_id: int | None = None
        # beat id -> first beat of region 0 whose tempo-change flag it cleared
        self._displaced_anchors: dict[int, UserBeat] = {}

        if load_saved is not None:
            self._load(load_saved)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def min_beat_spacing(self) -> float:
        return self.config.min_beat_spacing

    def region_by_id(self, region_id: int) -> TempoRegion:
        region = self._find_region(region_id)
        if region is None:
            raise KeyError(f"unknown region id {region_id}")
        return region

    def beat_by_id(self, beat_id: int) -> UserBeat:
        try:
            return self._user_beats_by_id[beat_id]
        except KeyError:
            raise KeyError(f"unknown beat id {beat_id}") from None

    @property
    def selected_region_id(self) -> int | None:
        return self._selected_region_id

    @selected_region_id.setter
    def selected_region_id(self, region_id: int | None) -> None:
        if region_id is not None and self._find_region(region_id) is None:
            logger.warning(f"Cannot select nonexistent region {region_id}")
            return
        self._selected_region_id = region_id

    @property
    def selected_region(self) -> TempoRegion | None:
        if self._selected_region_id is None:
            return None
        return self.region_by_id(self._selected_region_id)

    def _find_region(self, region_id: int) -> TempoRegion | None:
        for region in self.regions:
            if region.id == region_id:
                return region
        return None

    def _containing_region_index(self, time: float) -> int | None:
        """Region whose span holds ``time``; region 0 extends to -inf."""
        if not self.regions:
            return None
        idx = max(bisect.bisect_right(self.regions, time, key=_region_start) - 1, 0)
        if time < self.regions[idx].end_time:
            return idx
        return None

    def _beat_index(self, region: TempoRegion, beat: UserBeat) -> int:
        idx = bisect.bisect_left(region.user_beats, beat.time, key=_beat_time)
        if idx >= len(region.user_beats) or region.user_beats[idx] is not beat:
            raise RuntimeError(f"beat {beat.id} is not in region {region.id}")
        return idx

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def add_point(self, time: float, is_tempo_change: bool = False) -> UserBeat | None:
        """Place a user beat; returns None if it is rejected.

        A tempo-change beat splits its region in two unless it lands before
        every beat of the first region. A tempo change closer than the
        spacing floor to the preceding beat turns that beat into the anchor.
        """
        time = float(time)
        if not 0.0 <= time < self.duration:
            logger.debug(f"Rejected beat at {time:.3f}s: outside track")
            return None

        if not self.regions:
            region = TempoRegion(
                id=next(self._region_ids), index=0, start_time=time, end_time=self.duration,
            )
            self.regions.append(region)
            beat = self._new_user_beat(time, 0, is_tempo_change)
            region.user_beats.append(beat)
            self._selected_region_id = region.id
            self._commit([region])
            return beat

        ridx = self._containing_region_index(time)
        if ridx is None:
            return None
        region = self.regions[ridx]
        beats = region.user_beats
        insert_at = bisect.bisect_right(beats, time, key=_beat_time)

        if insert_at < len(beats):
            after = beats[insert_at]
        elif ridx < len(self.regions) - 1:
            after = self.regions[ridx + 1].user_beats[0]
        else:
            after = None
        before = beats[insert_at - 1] if insert_at > 0 else None

        spacing = self.min_beat_spacing
        if after is not None and after.time - time < spacing:
            logger.debug(f"Rejected beat at {time:.3f}s: too close to {after.time:.3f}s")
            return None

        if not is_tempo_change:
            if before is not None and time - before.time < spacing:
                logger.debug(f"Rejected beat at {time:.3f}s: too close to {before.time:.3f}s")
                return None
            beat = self._new_user_beat(time, ridx, False)
            beats.insert(insert_at, beat)
            if insert_at == 0:
                # only reachable in the first region
                if beats[1].is_tempo_change:
                    self._displaced_anchors[beat.id] = beats[1]
                self._set_tempo_change(beats[1], False)
                region.start_time = min(region.start_time, time)
            self._selected_region_id = region.id
            self._commit([region])
            return beat

        if before is not None and time - before.time < spacing:
            beat = before
            del beats[insert_at - 1]
            insert_at -= 1
            beat.time = time
            beat.is_tempo_change = True
            self.view.update_marker(beat.marker_id, time, beat.marker_kind)
        else:
            beat = self._new_user_beat(time, ridx, True)

        if insert_at == 0:
            touched = self._reanchor_region(ridx, beat)
        else:
            touched = self._split_region(ridx, insert_at, beat)
        self._commit(touched)
        return beat

    def _reanchor_region(self, ridx: int, anchor: UserBeat) -> list[TempoRegion]:
        """Make ``anchor`` the first beat of region ``ridx`` in place."""
        region = self.regions[ridx]
        if region.user_beats:
            self._set_tempo_change(region.user_beats[0], False)
        region.user_beats.insert(0, anchor)
        anchor.region_index = ridx
        region.start_time = anchor.time
        touched = [region]
        if ridx > 0:
            prev = self.regions[ridx - 1]
            prev.end_time = anchor.time
            touched.insert(0, prev)
        self._selected_region_id = region.id
        return touched

    def _split_region(self, ridx: int, cut_at: int, anchor: UserBeat) -> list[TempoRegion]:
        """Move beats from ``cut_at`` on into a new region headed by ``anchor``."""
        region = self.regions[ridx]
        moved = region.user_beats[cut_at:]
        del region.user_beats[cut_at:]
        new_region = TempoRegion(
            id=next(self._region_ids),
            index=ridx + 1,
            start_time=anchor.time,
            end_time=region.end_time,
            tempo=self._tempo_for_split(region.tempo),
            user_beats=[anchor] + moved,
            offbeats_marked=region.offbeats_marked,
        )
        region.end_time = anchor.time
        self.regions.insert(ridx + 1, new_region)
        self._reassign_region_indices()
        self._selected_region_id = new_region.id
        logger.info(f"Split region {region.id} at {anchor.time:.3f}s into new region "
                    f"{new_region.id} ({len(new_region.user_beats)} beats)")
        return [region, new_region]

    @staticmethod
    def _tempo_for_split(tempo: Tempo) -> Tempo:
        if isinstance(tempo, TappedTempo):
            return TappedTempo()
        elif isinstance(tempo, FixedTempo):
            return FixedTempo(bpm=tempo.bpm)
        raise TypeError(f"unknown tempo variant: {tempo!r}")

    def delete_point(self, beat_id: int) -> None:
        """Remove a user beat; deleting a tempo-change anchor merges regions."""
        beat = self.beat_by_id(beat_id)
        region = self.regions[beat.region_index]
        idx = self._beat_index(region, beat)
        del self._user_beats_by_id[beat_id]
        self.view.remove_marker(beat.marker_id)
        displaced = self._displaced_anchors.pop(beat_id, None)

        touched: list[TempoRegion] = []
        if idx == 0 and region.index > 0:
            prev = self.regions[region.index - 1]
            prev.user_beats.extend(region.user_beats[1:])
            prev.end_time = region.end_time
            del self.regions[region.index]
            self._discard_region(region)
            self._reassign_region_indices()
            if self._selected_region_id == region.id:
                self._selected_region_id = prev.id
            logger.info(f"Merged region {region.id} into region {prev.id}")
            touched.append(prev)
        else:
            del region.user_beats[idx]
            if region.user_beats:
                region.start_time = region.user_beats[0].time
                if displaced is not None and region.index == 0 and region.user_beats[0] is displaced:
                    self._set_tempo_change(displaced, True)
                touched.append(region)
            else:
                del self.regions[region.index]
                self._discard_region(region)
                self._reassign_region_indices()
                if self._selected_region_id == region.id:
                    self._selected_region_id = None
                logger.info(f"Removed empty region {region.id}")
        self._commit(touched)

    def try_move_point(self, beat_id: int, to_time: float, phase: str = "end") -> float:
        """Move a user beat as far toward ``to_time`` as spacing allows.

        Returns the time actually applied. Recompute and save only happen on
        the ``"end"`` phase of a drag.
        """
        if phase not in MOVE_PHASES:
            raise ValueError(f"unknown move phase {phase!r}")
        beat = self.beat_by_id(beat_id)
        if not math.isfinite(to_time):
            logger.warning(f"Ignored move of beat {beat_id} to {to_time}")
            return beat.time
        region = self.regions[beat.region_index]
        beats = region.user_beats
        idx = self._beat_index(region, beat)
        prev_region = self.regions[region.index - 1] if region.index > 0 else None
        next_region = self.regions[region.index + 1] if region.index < len(self.regions) - 1 else None
        spacing = self.min_beat_spacing

        clamped = float(to_time)
        if idx > 0:
            clamped = max(clamped, beats[idx - 1].time + spacing)
        elif prev_region is not None:
            clamped = max(clamped, prev_region.user_beats[-1].time + spacing)
        else:
            clamped = max(clamped, 0.0)
        if idx < len(beats) - 1:
            clamped = min(clamped, beats[idx + 1].time - spacing)
        elif next_region is not None:
            clamped = min(clamped, next_region.user_beats[0].time - spacing)
        else:
            clamped = min(clamped, self.duration)

        beat.time = clamped
        self.view.update_marker(beat.marker_id, clamped, beat.marker_kind)
        touched = [region]
        if idx == 0:
            region.start_time = clamped
            if prev_region is not None:
                prev_region.end_time = clamped
                touched.insert(0, prev_region)

        if phase == "end":
            self._commit(touched)
        return clamped

    def set_viewport(self, start_time: float, end_time: float) -> None:
        """Re-project auto beats for a new visible window."""
        if self.projector.set_viewport(float(start_time), float(end_time)):
            self.projector.project(self.regions)

    def set_region_type(self, region_id: int, kind: str) -> bool:
        """Switch a region between ``"tapped"`` and ``"fixed"`` tempo."""
        if kind not in TEMPO_KINDS:
            raise ValueError(f"unknown tempo type {kind!r}")
        region = self._find_region(region_id)
        if region is None:
            logger.warning(f"set_region_type: no region {region_id}")
            return False
        if tempo_kind(region.tempo) == kind:
            logger.warning(f"set_region_type: region {region_id} is already {kind}")
            return False

        if kind == "fixed":
            value = region.tempo.value
            bpm = round(value.bpm, 2) if value is not None else self.config.default_fixed_bpm
            bpm = min(max(bpm, self.config.min_bpm), self.config.max_tempo)
            region.tempo = FixedTempo(bpm=bpm)
        else:
            region.tempo = TappedTempo()
        logger.info(f"Region {region_id} tempo set to {kind}")
        self._commit([region])
        return True

    def set_region_fixed_tempo(self, region_id: int, bpm: float) -> bool:
        """Set the BPM of a fixed-tempo region."""
        region = self._find_region(region_id)
        if region is None:
            logger.warning(f"set_region_fixed_tempo: no region {region_id}")
            return False
        if not isinstance(region.tempo, FixedTempo):
            logger.warning(f"set_region_fixed_tempo: region {region_id} is not fixed tempo")
            return False
        if not self.config.min_bpm <= bpm <= self.config.max_tempo:
            return False
        region.tempo.bpm = float(bpm)
        self._commit([region])
        return True

    def set_offbeats_marked(self, region_id: int, marked: bool) -> bool:
        region = self._find_region(region_id)
        if region is None:
            logger.warning(f"set_offbeats_marked: no region {region_id}")
            return False
        region.offbeats_marked = bool(marked)
        self._notify_save()
        return True

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def _new_user_beat(self, time: float, region_index: int, is_tempo_change: bool) -> UserBeat:
        beat = UserBeat(
            id=next(self._user_beat_ids),
            time=time,
            region_index=region_index,
            is_tempo_change=is_tempo_change,
        )
        self._user_beats_by_id[beat.id] = beat
        self.view.add_marker(beat.marker_id, time, beat.marker_kind, True)
        return beat

    def _set_tempo_change(self, beat: UserBeat, flag: bool) -> None:
        if beat.is_tempo_change != flag:
            beat.is_tempo_change = flag
            self.view.update_marker(beat.marker_id, beat.time, beat.marker_kind)

    def _reassign_region_indices(self) -> None:
        for i, region in enumerate(self.regions):
            region.index = i
            for beat in region.user_beats:
                beat.region_index = i
            for auto in region.auto_beats:
                auto.region_index = i

    def _discard_region(self, region: TempoRegion) -> None:
        self.projector.clear(region)
        self.view.remove_segment(region.segment_id)

    def _recompute(self, region: TempoRegion) -> None:
        if not region.user_beats:
            logger.error(f"Region {region.id} has no beats; keeping previous tempo state")
            return
        times = [b.time for b in region.user_beats]
        tempo = region.tempo
        if isinstance(tempo, TappedTempo):
            tempo.value = estimate_tapped_tempo(times)
        elif isinstance(tempo, FixedTempo):
            tempo.phase_offset = estimate_phase_offset(times, region.start_time, tempo.bpm)
        else:
            raise TypeError(f"unknown tempo variant: {tempo!r}")
        for beat, period in zip(region.user_beats, local_beat_periods(times, tempo_period(tempo))):
            beat.local_beat_period = period

    def _refresh_segment(self, region: TempoRegion) -> None:
        label = tempo_label(region.tempo)
        if label is None:
            self.view.remove_segment(region.segment_id)
        else:
            self.view.update_segment(region.segment_id, region.start_time, region.end_time, label)

    def _commit(self, touched: list[TempoRegion], save: bool = True) -> None:
        for region in touched:
            self._recompute(region)
        self.projector.project(self.regions, touched)
        for region in touched:
            self._refresh_segment(region)
        if save:
            self._notify_save()

    def _notify_save(self) -> None:
        if self._on_save is not None:
            self._on_save(self.save())

    # ------------------------------------------------------------------
    # Save / load
    # ------------------------------------------------------------------

    def save(self) -> SaveObject:
        """Snapshot of the annotation; inferred beats cover whole regions."""
        precision = self.config.save_precision
        saved = []
        for region in self.regions:
            tempo = region.tempo
            if isinstance(tempo, FixedTempo):
                tempo_type, bpm = "fixed", tempo.bpm
            elif isinstance(tempo, TappedTempo):
                tempo_type, bpm = "tapped", None
            else:
                raise TypeError(f"unknown tempo variant: {tempo!r}")
            saved.append(SavedRegion(
                tempo_type=tempo_type,
                bpm=bpm,
                marked_beats=[round(b.time, precision) for b in region.user_beats],
                inferred_beats=[round(t, precision)
                                for t in auto_beat_times(region, self.config.merge_tolerance)],
                offbeats_marked=region.offbeats_marked,
            ))
        return SaveObject(tempo_regions=saved)

    def _validate_save(self, saved: SaveObject) -> None:
        n = len(saved.tempo_regions)
        for i, region in enumerate(saved.tempo_regions):
            if not region.marked_beats:
                raise InvalidSaveError(f"tempo region {i} has no beats")
            if region.tempo_type not in TEMPO_KINDS:
                raise InvalidSaveError(f"tempo region {i} has unknown tempo type {region.tempo_type!r}")
            if region.tempo_type == "fixed" and not (
                region.bpm is not None
                and math.isfinite(region.bpm)
                and self.config.min_bpm <= region.bpm <= self.config.max_tempo
            ):
                raise InvalidSaveError(
                    f"tempo region {i} has invalid bpm {region.bpm!r} "
                    f"(allowed {self.config.min_bpm:g}-{self.config.max_tempo:g})")
            beats = region.marked_beats
            if not all(math.isfinite(t) for t in beats):
                raise InvalidSaveError(f"tempo region {i} has non-finite beat times")
            if any(b <= a for a, b in zip(beats, beats[1:])):
                raise InvalidSaveError(f"tempo region {i}: beats not in ascending order")

        for i, region in enumerate(saved.tempo_regions):
            start = region.marked_beats[0]
            last = region.marked_beats[-1]
            if i < n - 1:
                end = saved.tempo_regions[i + 1].marked_beats[0]
                if start >= end or last >= end:
                    raise InvalidSaveError(f"invalid region start/end times: {start}, {end}")
            elif start >= self.duration or last > self.duration:
                raise InvalidSaveError(
                    f"tempo region {i} extends past track duration {self.duration}")

    def _load(self, saved: SaveObject | dict) -> None:
        if isinstance(saved, dict):
            saved = SaveObject.from_dict(saved)
        self._validate_save(saved)

        n = len(saved.tempo_regions)
        for i, saved_region in enumerate(saved.tempo_regions):
            if saved_region.tempo_type == "fixed":
                tempo: Tempo = FixedTempo(bpm=float(saved_region.bpm))
            else:
                tempo = TappedTempo()
            end = saved.tempo_regions[i + 1].marked_beats[0] if i < n - 1 else self.duration
            region = TempoRegion(
                id=next(self._region_ids),
                index=i,
                start_time=saved_region.marked_beats[0],
                end_time=end,
                tempo=tempo,
                offbeats_marked=saved_region.offbeats_marked,
            )
            for j, t in enumerate(saved_region.marked_beats):
                region.user_beats.append(self._new_user_beat(t, i, j == 0))
            self.regions.append(region)

        self._reassign_region_indices()
        self._commit(self.regions, save=False)
        logger.info(f"Loaded {len(self.regions)} regions, {len(self._user_beats_by_id)} beats")
