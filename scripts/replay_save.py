#!/usr/bin/env python3
"""Replay a save file through the annotation engine and summarize it.

Loads the save object, rebuilds every tempo region, recomputes tempo and
inferred beats, and prints one line per region. With --output the
normalized save object (fresh inferredBeats) is written back as JSON.

Usage:
    python scripts/replay_save.py track.json --duration 215.3
    python scripts/replay_save.py track.json --duration 215.3 --output fixed.json
    python scripts/replay_save.py track.json --duration 215.3 --json
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

logging.basicConfig(level=logging.WARNING, format="%(name)s %(levelname)s: %(message)s")

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from beatmark.annotation.engine import AnnotationEngine, InvalidSaveError
from beatmark.annotation.models import FixedTempo, SaveObject, TappedTempo


def summarize(engine: AnnotationEngine) -> list[dict]:
    """Per-region summary rows."""
    saved = engine.save()
    rows = []
    for region, saved_region in zip(engine.regions, saved.tempo_regions):
        tempo = region.tempo
        row = {
            "index": region.index,
            "start": round(region.start_time, 3),
            "end": round(region.end_time, 3),
            "type": saved_region.tempo_type,
            "beats": len(region.user_beats),
            "inferred": len(saved_region.inferred_beats),
            "bpm": None,
            "stddev": None,
        }
        if isinstance(tempo, TappedTempo):
            if tempo.value is not None:
                row["bpm"] = round(tempo.value.bpm, 2)
                row["stddev"] = round(tempo.value.stddev, 3)
        elif isinstance(tempo, FixedTempo):
            row["bpm"] = tempo.bpm
        rows.append(row)
    return rows


def print_table(rows: list[dict]) -> None:
    print(f"{'#':>3}  {'start':>9}  {'end':>9}  {'type':<6}  {'beats':>5}  "
          f"{'inferred':>8}  {'bpm':>8}  {'sigma':>7}")
    print("-" * 68)
    for r in rows:
        bpm = f"{r['bpm']:.2f}" if r["bpm"] is not None else "-"
        sigma = f"{r['stddev']:.3f}" if r["stddev"] is not None else "-"
        print(f"{r['index']:>3}  {r['start']:>9.3f}  {r['end']:>9.3f}  {r['type']:<6}  "
              f"{r['beats']:>5}  {r['inferred']:>8}  {bpm:>8}  {sigma:>7}")


def main():
    parser = argparse.ArgumentParser(description="Replay and summarize a beat annotation save file")
    parser.add_argument("save_file", type=Path, help="Save object JSON")
    parser.add_argument("--duration", type=float, required=True,
                        help="Track duration in seconds")
    parser.add_argument("--output", type=Path, default=None,
                        help="Write the normalized save object here")
    parser.add_argument("--json", action="store_true",
                        help="Print the summary as JSON instead of a table")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger("beatmark").setLevel(logging.INFO)

    data = json.loads(args.save_file.read_text(encoding="utf-8"))
    try:
        engine = AnnotationEngine(args.duration, load_saved=SaveObject.from_dict(data))
    except InvalidSaveError as e:
        print(f"ERROR: {args.save_file}: {e}", file=sys.stderr)
        sys.exit(1)

    rows = summarize(engine)
    if args.json:
        print(json.dumps(rows, indent=2))
    else:
        print_table(rows)

    if args.output is not None:
        args.output.write_text(json.dumps(engine.save().to_dict(), indent=2), encoding="utf-8")
        print(f"\nWrote {args.output}")


if __name__ == "__main__":
    main()
