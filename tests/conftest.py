"""Shared test fixtures for annotation engine tests."""

import pytest
from fastapi.testclient import TestClient

from beatmark.annotation.engine import AnnotationEngine
from beatmark.annotation.view import MarkerTable
from beatmark.api.sessions import store
from beatmark.main import app


@pytest.fixture
def client():
    """FastAPI test client with an empty session store."""
    store.clear()
    yield TestClient(app)
    store.clear()


@pytest.fixture
def markers():
    return MarkerTable()


@pytest.fixture
def saves():
    """Collects every save object the engine reports."""
    return []


@pytest.fixture
def engine(markers, saves):
    """Engine for a 60 s track wired to a marker table and save log."""
    return AnnotationEngine(60.0, save=saves.append, view=markers)


def add_beats(engine: AnnotationEngine, times, is_tempo_change: bool = False) -> list:
    """Add plain beats and return them; fails if any is rejected."""
    beats = []
    for t in times:
        beat = engine.add_point(t, is_tempo_change=is_tempo_change)
        assert beat is not None, f"beat at {t} rejected"
        beats.append(beat)
    return beats


def region_layout(engine: AnnotationEngine) -> list[tuple]:
    """(start, end, beat times) per region, for structural comparisons."""
    return [
        (r.start_time, r.end_time, [b.time for b in r.user_beats])
        for r in engine.regions
    ]


def assert_invariants(engine: AnnotationEngine) -> None:
    """Check every region/beat invariant that must hold after an edit."""
    regions = engine.regions
    spacing = engine.min_beat_spacing
    all_times = []
    for i, region in enumerate(regions):
        assert region.index == i
        assert region.user_beats, f"region {region.id} is empty"
        for beat in region.user_beats:
            assert beat.region_index == i
        for auto in region.auto_beats:
            assert auto.region_index == i
        assert region.start_time == region.user_beats[0].time
        if i > 0:
            assert region.user_beats[0].is_tempo_change
        assert not any(b.is_tempo_change for b in region.user_beats[1:])
        if i < len(regions) - 1:
            assert region.end_time == regions[i + 1].start_time
        else:
            assert region.end_time == engine.duration
        all_times.extend(b.time for b in region.user_beats)

    for a, b in zip(all_times, all_times[1:]):
        assert b - a >= spacing - 1e-9, f"beats {a} and {b} closer than {spacing}"

    ids = {b.id for r in regions for b in r.user_beats}
    assert ids == set(engine._user_beats_by_id)
