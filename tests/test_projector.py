"""Tests for auto-beat projection."""

import pytest

from beatmark.annotation.models import FixedTempo, TappedTempo, TempoEstimate, TempoRegion, UserBeat
from beatmark.annotation.projector import AutoBeatProjector, auto_beat_times
from beatmark.annotation.view import MarkerTable


def _region(region_id, index, start, end, beat_times, tempo, first_beat_id=1):
    beats = [UserBeat(id=first_beat_id + i, time=t, region_index=index) for i, t in enumerate(beat_times)]
    return TempoRegion(id=region_id, index=index, start_time=start, end_time=end,
                       tempo=tempo, user_beats=beats)


def _tapped(period=0.5):
    return TappedTempo(TempoEstimate(mean_period=period, stddev=0.0))


def test_tapped_fills_after_last_beat():
    region = _region(1, 0, 0.0, 4.0, [0.0, 0.5, 1.0], _tapped())
    assert auto_beat_times(region) == pytest.approx([1.5, 2.0, 2.5, 3.0, 3.5])


def test_tapped_fills_gaps_between_beats():
    region = _region(1, 0, 0.0, 2.0, [0.0, 1.0], _tapped())
    assert auto_beat_times(region) == pytest.approx([0.5, 1.5])


def test_tapped_skips_markers_crowding_a_user_beat():
    """A marker within the merge tolerance of the next beat is dropped."""
    region = _region(1, 0, 0.0, 2.0, [0.0, 0.52, 1.0], _tapped())
    assert auto_beat_times(region, merge_tolerance=0.1) == pytest.approx([1.5])
    assert auto_beat_times(region, merge_tolerance=0.0) == pytest.approx([0.5, 1.5])


def test_tapped_without_estimate_has_no_markers():
    region = _region(1, 0, 0.0, 10.0, [1.0], TappedTempo())
    assert auto_beat_times(region) == []


def test_fixed_grid_from_region_start():
    region = _region(1, 0, 1.0, 3.0, [1.0], FixedTempo(bpm=120.0))
    assert auto_beat_times(region) == pytest.approx([1.0, 1.5, 2.0, 2.5])


def test_fixed_grid_never_before_region_start():
    region = _region(1, 0, 1.0, 3.0, [1.0], FixedTempo(bpm=120.0, phase_offset=-0.1))
    assert auto_beat_times(region) == pytest.approx([1.4, 1.9, 2.4, 2.9])


def test_unknown_tempo_variant_raises():
    region = _region(1, 0, 0.0, 1.0, [0.0], tempo="tapped")
    with pytest.raises(TypeError):
        auto_beat_times(region)


def test_projection_stays_inside_buffered_viewport():
    region = _region(1, 0, 0.0, 100.0, [0.0, 0.5], _tapped())
    projector = AutoBeatProjector(100.0, draw_buffer=30.0)
    projector.set_viewport(50.0, 60.0)
    projector.project([region])

    times = [a.time for a in region.auto_beats]
    assert len(times) == 140
    assert min(times) == pytest.approx(20.0)
    assert all(20.0 <= t < 90.0 for t in times)
    assert times == sorted(times)


def test_unchanged_viewport_keeps_marker_ids():
    region = _region(1, 0, 0.0, 100.0, [0.0, 0.5], _tapped())
    projector = AutoBeatProjector(100.0, draw_buffer=30.0)
    projector.set_viewport(50.0, 60.0)
    projector.project([region])
    before = [(a.id, a.time) for a in region.auto_beats]

    assert projector.set_viewport(50.0, 60.0) is False
    projector.project([region])
    assert [(a.id, a.time) for a in region.auto_beats] == before


def test_scrolling_recycles_markers_in_place():
    """Shifting markers keep their ids; only surplus ones are dropped."""
    markers = MarkerTable()
    region = _region(1, 0, 0.0, 100.0, [0.0, 0.5], _tapped())
    projector = AutoBeatProjector(100.0, view=markers, draw_buffer=30.0)
    projector.set_viewport(50.0, 60.0)
    projector.project([region])
    ids = [a.id for a in region.auto_beats]

    projector.set_viewport(60.0, 70.0)
    projector.project([region])
    assert [a.id for a in region.auto_beats] == ids
    assert region.auto_beats[0].time == pytest.approx(30.0)

    projector.set_viewport(80.0, 95.0)
    projector.project([region])
    assert [a.id for a in region.auto_beats] == ids[:100]
    assert len(markers.times("auto")) == 100


def test_regions_outside_window_are_cleared():
    markers = MarkerTable()
    first = _region(1, 0, 0.0, 100.0, [0.0, 0.5], _tapped())
    second = _region(2, 1, 100.0, 200.0, [100.0, 100.5], _tapped(), first_beat_id=3)
    projector = AutoBeatProjector(200.0, view=markers, draw_buffer=30.0)

    projector.set_viewport(0.0, 10.0)
    projector.project([first, second])
    assert first.auto_beats
    assert second.auto_beats == []

    projector.set_viewport(150.0, 160.0)
    projector.project([first, second])
    assert first.auto_beats == []
    assert second.auto_beats
    assert all(120.0 <= t < 190.0 for t in markers.times("auto"))


def test_touched_subset_leaves_other_regions_alone():
    first = _region(1, 0, 0.0, 10.0, [0.0, 0.5], _tapped())
    second = _region(2, 1, 10.0, 20.0, [10.0, 10.5], _tapped(), first_beat_id=3)
    projector = AutoBeatProjector(20.0, draw_buffer=30.0)
    projector.project([first, second])
    untouched = list(second.auto_beats)

    first.tempo = _tapped(0.25)
    projector.project([first, second], touched=[first])
    assert second.auto_beats == untouched
    assert first.auto_beats[0].time == pytest.approx(0.25)
