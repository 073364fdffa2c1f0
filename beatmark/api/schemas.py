"""Pydantic request/response models for API."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from beatmark.annotation.engine import AnnotationEngine
from beatmark.annotation.models import FixedTempo, SaveObject, TappedTempo, TempoRegion
from beatmark.annotation.view import MarkerTable


# Save objects (camelCase on the wire)

class SavedTempoModel(BaseModel):
    type: Literal["tapped", "fixed"]
    bpm: float | None = None


class SavedRegionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    offbeats_marked: bool = Field(False, alias="offbeatsMarked")
    tempo: SavedTempoModel
    marked_beats: list[float] = Field(alias="markedBeats")
    inferred_beats: list[float] = Field(default_factory=list, alias="inferredBeats")


class SaveObjectModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tempo_regions: list[SavedRegionModel] = Field(alias="tempoRegions")

    def to_save_object(self) -> SaveObject:
        return SaveObject.from_dict(self.model_dump(by_alias=True))


# Requests

class CreateSessionRequest(BaseModel):
    duration: float = Field(gt=0)
    saved: SaveObjectModel | None = None


class AddPointRequest(BaseModel):
    time: float
    is_tempo_change: bool = False


class MovePointRequest(BaseModel):
    to_time: float
    phase: Literal["start", "move", "end"] = "end"


class ViewportRequest(BaseModel):
    start_time: float
    end_time: float


class RegionTypeRequest(BaseModel):
    type: Literal["tapped", "fixed"]


class FixedTempoRequest(BaseModel):
    bpm: float


class OffbeatsRequest(BaseModel):
    marked: bool


class SelectionRequest(BaseModel):
    region_id: int | None


# Responses

class UserBeatResponse(BaseModel):
    id: int
    time: float
    is_tempo_change: bool
    local_beat_period: float | None = None


class AutoBeatResponse(BaseModel):
    id: int
    time: float


class TempoResponse(BaseModel):
    type: Literal["tapped", "fixed"]
    bpm: float | None = None
    mean_period: float | None = None
    stddev: float | None = None
    phase_offset: float | None = None


class RegionResponse(BaseModel):
    id: int
    index: int
    start_time: float
    end_time: float
    tempo: TempoResponse
    offbeats_marked: bool
    user_beats: list[UserBeatResponse]
    auto_beats: list[AutoBeatResponse]


class SessionResponse(BaseModel):
    session_id: str
    duration: float
    selected_region_id: int | None = None
    viewport: list[float]
    regions: list[RegionResponse]


class AddPointResponse(BaseModel):
    accepted: bool
    beat: UserBeatResponse | None = None


class MovePointResponse(BaseModel):
    time: float


class AcceptedResponse(BaseModel):
    accepted: bool


class MarkerResponse(BaseModel):
    id: str
    time: float
    kind: str
    draggable: bool


class SegmentResponse(BaseModel):
    id: str
    start_time: float
    end_time: float
    label: str


class MarkersResponse(BaseModel):
    markers: list[MarkerResponse]
    segments: list[SegmentResponse]


def tempo_to_response(region: TempoRegion) -> TempoResponse:
    tempo = region.tempo
    if isinstance(tempo, TappedTempo):
        if tempo.value is None:
            return TempoResponse(type="tapped")
        return TempoResponse(
            type="tapped",
            bpm=tempo.value.bpm,
            mean_period=tempo.value.mean_period,
            stddev=tempo.value.stddev,
        )
    elif isinstance(tempo, FixedTempo):
        return TempoResponse(type="fixed", bpm=tempo.bpm, mean_period=tempo.period,
                             phase_offset=tempo.phase_offset)
    raise TypeError(f"unknown tempo variant: {tempo!r}")


def beat_to_response(beat) -> UserBeatResponse:
    return UserBeatResponse(
        id=beat.id,
        time=beat.time,
        is_tempo_change=beat.is_tempo_change,
        local_beat_period=beat.local_beat_period,
    )


def session_to_response(session_id: str, engine: AnnotationEngine) -> SessionResponse:
    return SessionResponse(
        session_id=session_id,
        duration=engine.duration,
        selected_region_id=engine.selected_region_id,
        viewport=list(engine.projector.viewport),
        regions=[
            RegionResponse(
                id=r.id,
                index=r.index,
                start_time=r.start_time,
                end_time=r.end_time,
                tempo=tempo_to_response(r),
                offbeats_marked=r.offbeats_marked,
                user_beats=[beat_to_response(b) for b in r.user_beats],
                auto_beats=[AutoBeatResponse(id=a.id, time=a.time) for a in r.auto_beats],
            )
            for r in engine.regions
        ],
    )


def markers_to_response(table: MarkerTable) -> MarkersResponse:
    return MarkersResponse(
        markers=[
            MarkerResponse(id=k, time=m.time, kind=m.kind, draggable=m.draggable)
            for k, m in sorted(table.markers.items(), key=lambda kv: kv[1].time)
        ],
        segments=[
            SegmentResponse(id=k, start_time=s.start_time, end_time=s.end_time, label=s.label)
            for k, s in sorted(table.segments.items(), key=lambda kv: kv[1].start_time)
        ],
    )
