"""Core data models for beat annotation."""

from dataclasses import dataclass, field


@dataclass(eq=False)
class UserBeat:
    """A beat placed by the user."""
    id: int
    time: float  # seconds
    region_index: int
    is_tempo_change: bool = False
    # distance to the previous beat divided by the implied number of periods
    local_beat_period: float | None = None

    @property
    def marker_id(self) -> str:
        return f"user{self.id}"

    @property
    def marker_kind(self) -> str:
        return "tempoChange" if self.is_tempo_change else "beat"


@dataclass(eq=False)
class AutoBeat:
    """A beat inferred from the region's tempo model."""
    id: int
    time: float
    region_index: int

    @property
    def marker_id(self) -> str:
        return f"auto{self.id}"


@dataclass
class TempoEstimate:
    """Tapped tempo estimate."""
    mean_period: float  # seconds per beat
    stddev: float  # BPM spread of the individual gaps

    @property
    def bpm(self) -> float:
        return 60.0 / self.mean_period


@dataclass
class TappedTempo:
    """Tempo derived from the user beats; ``value`` is None with < 2 beats."""
    value: TempoEstimate | None = None


@dataclass
class FixedTempo:
    """Tempo set directly by the user."""
    bpm: float
    phase_offset: float = 0.0

    @property
    def period(self) -> float:
        return 60.0 / self.bpm


Tempo = TappedTempo | FixedTempo

TEMPO_KINDS = ("tapped", "fixed")


def tempo_kind(tempo: Tempo) -> str:
    if isinstance(tempo, TappedTempo):
        return "tapped"
    elif isinstance(tempo, FixedTempo):
        return "fixed"
    raise TypeError(f"unknown tempo variant: {tempo!r}")


@dataclass(eq=False)
class TempoRegion:
    """A contiguous span of the track governed by one tempo model.

    ``start_time``/``end_time`` form a half-open interval that abuts the
    next region. ``user_beats`` is kept strictly ascending; for every
    region except the first, its first beat is the tempo-change anchor.
    """
    id: int
    index: int
    start_time: float
    end_time: float
    tempo: Tempo = field(default_factory=TappedTempo)
    user_beats: list[UserBeat] = field(default_factory=list)
    auto_beats: list[AutoBeat] = field(default_factory=list)
    offbeats_marked: bool = False

    @property
    def segment_id(self) -> str:
        return f"segment{self.id}"

    def contains(self, time: float) -> bool:
        return self.start_time <= time < self.end_time


# Save objects


@dataclass
class SavedRegion:
    """One tempo region of a save object."""
    tempo_type: str  # "tapped" | "fixed"
    marked_beats: list[float]
    inferred_beats: list[float] = field(default_factory=list)
    bpm: float | None = None  # only for fixed regions
    offbeats_marked: bool = False

    def to_dict(self) -> dict:
        if self.tempo_type == "fixed":
            tempo = {"type": "fixed", "bpm": self.bpm}
        else:
            tempo = {"type": "tapped"}
        return {
            "offbeatsMarked": self.offbeats_marked,
            "tempo": tempo,
            "markedBeats": list(self.marked_beats),
            "inferredBeats": list(self.inferred_beats),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SavedRegion":
        tempo = data.get("tempo") or {"type": "tapped"}
        return cls(
            tempo_type=tempo.get("type", "tapped"),
            bpm=tempo.get("bpm"),
            marked_beats=[float(t) for t in data.get("markedBeats", [])],
            inferred_beats=[float(t) for t in data.get("inferredBeats", [])],
            offbeats_marked=bool(data.get("offbeatsMarked", False)),
        )


@dataclass
class SaveObject:
    """Logical contents of a save file."""
    tempo_regions: list[SavedRegion] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"tempoRegions": [r.to_dict() for r in self.tempo_regions]}

    @classmethod
    def from_dict(cls, data: dict) -> "SaveObject":
        return cls(tempo_regions=[SavedRegion.from_dict(r) for r in data.get("tempoRegions", [])])
