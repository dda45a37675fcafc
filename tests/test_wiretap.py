"""
Tests for the wire log and the tap renderer.
"""

import json

from customgpt.wiretap import WireLog, format_entry, live_tap, read_entries


def _write(path, entries):
    path.write_text("".join(json.dumps(e) + "\n" for e in entries))


def test_wirelog_writes_jsonl(tmp_path):
    wire = WireLog(str(tmp_path / "sub" / "wire.jsonl"))
    wire.log("outbound", "request", '{"prompt": "hi"}', method="POST", url="http://x.test")
    wire.log("inbound", "response", "ok", method="POST", url="http://x.test", status=200)
    wire.close()

    lines = (tmp_path / "sub" / "wire.jsonl").read_text().splitlines()
    first, second = (json.loads(line) for line in lines)
    assert first["dir"] == "outbound"
    assert first["len"] == len('{"prompt": "hi"}')
    assert "status" not in first
    assert second["status"] == 200
    assert second["content"] == "ok"


def test_wirelog_clips_long_content(tmp_path):
    wire = WireLog(str(tmp_path / "wire.jsonl"))
    content = "a" * 1000 + "b" * 3000 + "c" * 1000
    wire.log("inbound", "response", content)
    wire.close()

    entry = json.loads((tmp_path / "wire.jsonl").read_text())
    assert entry["len"] == 5000
    assert entry["content"].startswith("a" * 1000)
    assert entry["content"].endswith("c" * 1000)
    assert "3000 chars truncated" in entry["content"]


def test_read_entries_filters_and_skips_garbage(tmp_path):
    path = tmp_path / "wire.jsonl"
    _write(path, [{"role": "request", "n": 1}, {"role": "response", "n": 2}, {"role": "request", "n": 3}])
    with open(path, "a") as f:
        f.write("not json\n\n")

    assert [e["n"] for e in read_entries(path)] == [1, 2, 3]
    assert [e["n"] for e in read_entries(path, last_n=2)] == [2, 3]
    assert [e["n"] for e in read_entries(path, role_filter="request")] == [1, 3]
    assert read_entries(tmp_path / "missing.jsonl") == []


def test_format_entry():
    entry = {
        "ts": "2024-05-01T12:34:56+00:00", "dir": "inbound", "role": "response",
        "method": "POST", "url": "http://x.test", "status": 404, "len": 5, "content": "hello",
    }
    pretty = format_entry(entry)
    assert "12:34:56" in pretty
    assert "RESPONSE" in pretty
    assert "POST http://x.test" in pretty
    assert "404" in pretty
    assert "hello" in pretty

    assert json.loads(format_entry(entry, raw=True)) == entry


def test_live_tap_prints_recent(tmp_path, capsys):
    path = tmp_path / "wire.jsonl"
    _write(path, [
        {"ts": "2024-05-01T12:00:00+00:00", "dir": "outbound", "role": "request", "content": "one"},
        {"ts": "2024-05-01T12:00:01+00:00", "dir": "internal", "role": "error", "content": "two"},
    ])
    live_tap(log_path=str(path), follow=False, raw=True, role_filter="error")
    out = capsys.readouterr().out.strip().splitlines()
    assert len(out) == 1
    assert json.loads(out[0])["content"] == "two"


def test_live_tap_missing_file(tmp_path, capsys):
    live_tap(log_path=str(tmp_path / "none.jsonl"), follow=False)
    assert "No wire log found" in capsys.readouterr().out
