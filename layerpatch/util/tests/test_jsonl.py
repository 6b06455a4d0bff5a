from pathlib import Path

from layerpatch.util.jsonl import append_jsonl, read_jsonl


def test_append_jsonl_and_read_jsonl_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"

    assert append_jsonl(path, {"event": "outcome", "ok": True}) is True
    assert append_jsonl(path, '{"event":"outcome","ok":false}') is True

    records = list(read_jsonl(path))

    assert records == [
        (1, {"event": "outcome", "ok": True}),
        (2, {"event": "outcome", "ok": False}),
    ]


def test_append_jsonl_creates_parent_directories(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "dir" / "events.jsonl"

    assert append_jsonl(path, {"a": 1}) is True
    assert path.read_text(encoding="utf-8") == '{"a": 1}\n'


def test_read_jsonl_flags_invalid_lines(tmp_path: Path) -> None:
    path = tmp_path / "mixed.jsonl"
    path.write_text('{"a": 1}\n\nnot-json\n[1, 2]\n{"b": 2}\n', encoding="utf-8")

    records = list(read_jsonl(path))

    assert records == [(1, {"a": 1}), (3, None), (4, None), (5, {"b": 2})]


def test_append_jsonl_reports_failure(tmp_path: Path, capsys) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")

    assert append_jsonl(blocker / "events.jsonl", {"a": 1}) is False
    assert "CRITICAL" in capsys.readouterr().err
