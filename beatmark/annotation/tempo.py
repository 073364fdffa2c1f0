"""Tempo estimation from user-placed beats."""

import math

import numpy as np

from beatmark.annotation.models import FixedTempo, TappedTempo, TempoEstimate, Tempo

# Gaps within this factor of the shortest gap are taken as single periods.
_CANDIDATE_BAND = 1.2
# Fraction of candidates trimmed from each end once there are enough of them.
_TRIM_FRACTION = 0.2
_MIN_CANDIDATES_FOR_TRIM = 5


def _round_half_up(x: np.ndarray) -> np.ndarray:
    return np.floor(x + 0.5)


def initial_period_estimate(dists: np.ndarray) -> float:
    """Outlier-robust single-period estimate from inter-beat gaps.

    The shortest gap is the reference; gaps within 20% of it are assumed to
    span exactly one beat. With at least five such candidates the lowest
    and highest 20% are dropped before averaging.
    """
    min_dist = float(dists.min())
    candidates = np.sort(dists[dists < min_dist * _CANDIDATE_BAND])
    if len(candidates) >= _MIN_CANDIDATES_FOR_TRIM:
        discard = math.ceil(len(candidates) * _TRIM_FRACTION)
        candidates = candidates[discard:len(candidates) - discard]
    return float(np.mean(candidates))


def estimate_tapped_tempo(times) -> TempoEstimate | None:
    """Estimate mean beat period and BPM spread from ascending beat times.

    Returns None with fewer than two beats.
    """
    times = np.asarray(times, dtype=float)
    if len(times) < 2:
        return None

    dists = np.diff(times)
    if float(dists.min()) <= 0:
        raise ValueError("beat times must be strictly ascending")

    initial = initial_period_estimate(dists)

    # Long gaps count as however many periods they span
    counts = np.maximum(_round_half_up(dists / initial), 1.0)
    mean_period = float(dists.sum() / counts.sum())

    mean_bpm = 60.0 / mean_period
    gap_bpms = 60.0 / (dists / counts)
    stddev = float(np.sqrt(np.mean((mean_bpm - gap_bpms) ** 2)))

    return TempoEstimate(mean_period=mean_period, stddev=stddev)


def local_beat_periods(times, mean_period: float | None) -> list[float | None]:
    """Per-beat gap to the previous beat, normalized to one period.

    The first beat, and any gap that rounds to zero periods, get None.
    """
    times = [float(t) for t in times]
    if mean_period is None:
        return [None] * len(times)

    periods: list[float | None] = []
    for i, t in enumerate(times):
        if i == 0:
            periods.append(None)
            continue
        between = t - times[i - 1]
        n_periods = math.floor(between / mean_period + 0.5)
        periods.append(between / n_periods if n_periods > 0 else None)
    return periods


def estimate_phase_offset(times, start_time: float, bpm: float) -> float:
    """Grid shift minimizing the mean alignment error of a fixed tempo.

    Every beat after the first is snapped to the nearest multiple of the
    period measured from ``start_time``; the offset is the negated mean
    snapping error. Fewer than two beats give 0.
    """
    times = np.asarray(times, dtype=float)
    if len(times) < 2:
        return 0.0

    period = 60.0 / bpm
    t = times[1:] - start_time
    n_periods = _round_half_up(t / period)
    errors = n_periods * period - t
    return float(-np.mean(errors))


def tempo_period(tempo: Tempo) -> float | None:
    """Beat period of a tempo model, None when not yet known."""
    if isinstance(tempo, TappedTempo):
        return tempo.value.mean_period if tempo.value is not None else None
    elif isinstance(tempo, FixedTempo):
        return tempo.period
    raise TypeError(f"unknown tempo variant: {tempo!r}")


def tempo_label(tempo: Tempo) -> str | None:
    """Human-readable tempo summary for a region overlay."""
    if isinstance(tempo, TappedTempo):
        if tempo.value is None:
            return None
        return f"{tempo.value.bpm:.2f} BPM (σ={tempo.value.stddev:.3f})"
    elif isinstance(tempo, FixedTempo):
        return f"{tempo.bpm:.2f} BPM (fixed)"
    raise TypeError(f"unknown tempo variant: {tempo!r}")
