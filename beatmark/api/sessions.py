"""Annotation session endpoints.

Each session owns one ``AnnotationEngine`` for one track. Sessions live in
process memory only; the client keeps the save object it gets back.
Endpoints are ``async`` so every edit runs to completion on the event loop
before the next one starts.
"""

import logging
import uuid

from fastapi import APIRouter, HTTPException

from beatmark.annotation.engine import AnnotationEngine, InvalidSaveError
from beatmark.annotation.models import SaveObject
from beatmark.annotation.view import MarkerTable
from beatmark.api.schemas import (
    AcceptedResponse,
    AddPointRequest,
    AddPointResponse,
    CreateSessionRequest,
    FixedTempoRequest,
    MarkersResponse,
    MovePointRequest,
    MovePointResponse,
    OffbeatsRequest,
    RegionTypeRequest,
    SaveObjectModel,
    SelectionRequest,
    SessionResponse,
    ViewportRequest,
    beat_to_response,
    markers_to_response,
    session_to_response,
)
from beatmark.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionLimitError(RuntimeError):
    pass


class Session:
    """One open track: its engine, displayed markers and latest save."""

    def __init__(self, duration: float, saved: SaveObject | None = None):
        self.markers = MarkerTable()
        self.last_saved: SaveObject | None = None
        self.engine = AnnotationEngine(duration, save=self._on_save, load_saved=saved,
                                       view=self.markers)

    def _on_save(self, obj: SaveObject) -> None:
        self.last_saved = obj


class SessionStore:
    """In-memory registry of open annotation sessions."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, duration: float, saved: SaveObject | None = None) -> tuple[str, Session]:
        if len(self._sessions) >= settings.max_sessions:
            raise SessionLimitError(f"session limit reached ({settings.max_sessions})")
        session = Session(duration, saved)
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = session
        logger.info(f"Opened session {session_id} ({duration:.1f}s, "
                    f"{len(session.engine.regions)} regions loaded)")
        return session_id, session

    def get(self, session_id: str) -> Session:
        return self._sessions[session_id]

    def close(self, session_id: str) -> None:
        del self._sessions[session_id]
        logger.info(f"Closed session {session_id}")

    def clear(self) -> None:
        self._sessions.clear()


store = SessionStore()


def _session(session_id: str) -> Session:
    try:
        return store.get(session_id)
    except KeyError:
        raise HTTPException(404, "Session not found")


@router.post("/sessions", response_model=SessionResponse)
async def create_session(req: CreateSessionRequest):
    """Open a session for a track, optionally from a save object."""
    if req.duration > settings.max_duration_seconds:
        raise HTTPException(400, f"Track too long (max {settings.max_duration_seconds:.0f} s)")
    saved = req.saved.to_save_object() if req.saved is not None else None
    try:
        session_id, session = store.create(req.duration, saved)
    except InvalidSaveError as e:
        raise HTTPException(400, f"Invalid save object: {e}")
    except SessionLimitError as e:
        raise HTTPException(429, str(e))
    return session_to_response(session_id, session.engine)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str):
    return session_to_response(session_id, _session(session_id).engine)


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str):
    _session(session_id)
    store.close(session_id)
    return {"status": "closed"}


@router.post("/sessions/{session_id}/points", response_model=AddPointResponse)
async def add_point(session_id: str, req: AddPointRequest):
    """Place a beat; ``accepted`` is false when spacing rules reject it."""
    engine = _session(session_id).engine
    beat = engine.add_point(req.time, is_tempo_change=req.is_tempo_change)
    if beat is None:
        return AddPointResponse(accepted=False)
    return AddPointResponse(accepted=True, beat=beat_to_response(beat))


@router.delete("/sessions/{session_id}/points/{beat_id}", response_model=SessionResponse)
async def delete_point(session_id: str, beat_id: int):
    engine = _session(session_id).engine
    try:
        engine.delete_point(beat_id)
    except KeyError:
        raise HTTPException(404, "Beat not found")
    return session_to_response(session_id, engine)


@router.post("/sessions/{session_id}/points/{beat_id}/move", response_model=MovePointResponse)
async def move_point(session_id: str, beat_id: int, req: MovePointRequest):
    """Drag a beat; the returned time is the one actually applied."""
    engine = _session(session_id).engine
    try:
        time = engine.try_move_point(beat_id, req.to_time, req.phase)
    except KeyError:
        raise HTTPException(404, "Beat not found")
    return MovePointResponse(time=time)


@router.put("/sessions/{session_id}/viewport", response_model=SessionResponse)
async def set_viewport(session_id: str, req: ViewportRequest):
    if req.end_time < req.start_time:
        raise HTTPException(422, "Viewport end before start")
    engine = _session(session_id).engine
    engine.set_viewport(req.start_time, req.end_time)
    return session_to_response(session_id, engine)


@router.put("/sessions/{session_id}/regions/{region_id}/type", response_model=AcceptedResponse)
async def set_region_type(session_id: str, region_id: int, req: RegionTypeRequest):
    engine = _session(session_id).engine
    return AcceptedResponse(accepted=engine.set_region_type(region_id, req.type))


@router.put("/sessions/{session_id}/regions/{region_id}/bpm", response_model=AcceptedResponse)
async def set_region_bpm(session_id: str, region_id: int, req: FixedTempoRequest):
    engine = _session(session_id).engine
    return AcceptedResponse(accepted=engine.set_region_fixed_tempo(region_id, req.bpm))


@router.put("/sessions/{session_id}/regions/{region_id}/offbeats", response_model=AcceptedResponse)
async def set_region_offbeats(session_id: str, region_id: int, req: OffbeatsRequest):
    engine = _session(session_id).engine
    return AcceptedResponse(accepted=engine.set_offbeats_marked(region_id, req.marked))


@router.put("/sessions/{session_id}/selection", response_model=SessionResponse)
async def set_selection(session_id: str, req: SelectionRequest):
    engine = _session(session_id).engine
    engine.selected_region_id = req.region_id
    return session_to_response(session_id, engine)


@router.get("/sessions/{session_id}/save", response_model=SaveObjectModel)
async def save_session(session_id: str):
    """Current save object; inferred beats cover every region in full."""
    engine = _session(session_id).engine
    return SaveObjectModel.model_validate(engine.save().to_dict())


@router.get("/sessions/{session_id}/markers", response_model=MarkersResponse)
async def get_markers(session_id: str):
    """Markers and region overlays as a waveform view would show them."""
    return markers_to_response(_session(session_id).markers)
