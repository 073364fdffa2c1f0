"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings with env var overrides."""

    # Beat spacing / tempo limits
    max_tempo: float = 300.0  # fastest plausible tapped tempo, sets the spacing floor
    min_bpm: float = 20.0
    default_fixed_bpm: float = 60.0

    # Auto-beat projection
    draw_buffer_seconds: float = 30.0
    merge_tolerance: float = 0.1  # fraction of a period kept clear before a bounding beat

    # Save objects
    save_precision: int = 6  # decimal places (1e-6 s)

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    max_sessions: int = 64
    max_duration_seconds: float = 6 * 60 * 60

    model_config = {"env_prefix": "BEATMARK_"}

    @property
    def min_beat_spacing(self) -> float:
        return 60.0 / self.max_tempo


settings = Settings()
