"""Tests for the save replay script."""

from beatmark.annotation.engine import AnnotationEngine
from scripts.replay_save import print_table, summarize


def test_summarize_rows(capsys):
    saved = {"tempoRegions": [
        {"tempo": {"type": "tapped"}, "markedBeats": [0.0, 0.5, 1.0, 1.5]},
        {"tempo": {"type": "fixed", "bpm": 90.0}, "markedBeats": [4.0]},
    ]}
    engine = AnnotationEngine(10.0, load_saved=saved)
    rows = summarize(engine)

    assert [r["type"] for r in rows] == ["tapped", "fixed"]
    assert rows[0]["bpm"] == 120.0
    assert rows[0]["stddev"] == 0.0
    assert rows[0]["end"] == 4.0
    assert rows[1]["bpm"] == 90.0
    assert rows[1]["stddev"] is None
    assert rows[1]["beats"] == 1

    print_table(rows)
    out = capsys.readouterr().out
    assert "tapped" in out and "fixed" in out
