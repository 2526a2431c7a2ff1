import subprocess

import pytest

from longscribe import audio_utils
from longscribe.audio_utils import (
    get_audio_duration_s,
    guess_mime_type,
    plan_chunks,
    split_audio_into_chunks,
)
from longscribe.exceptions import AudioSplitError


@pytest.mark.parametrize(
    "duration,chunk,expected",
    [
        (1500, 600, [(0, 600), (600, 600), (1200, 300)]),
        (1200, 600, [(0, 600), (600, 600)]),
        (601, 600, [(0, 600), (600, 1)]),
        (600, 600, [(0, 600)]),
        (42.5, 600, [(0, 42.5)]),
    ],
)
def test_plan_chunks(duration, chunk, expected):
    assert plan_chunks(duration, chunk) == expected


@pytest.mark.parametrize("duration", [1, 599.5, 600, 601, 1799.25, 3600, 7322.75])
def test_plan_chunks_covers_source_contiguously(duration):
    chunk = 600
    ranges = plan_chunks(duration, chunk)
    assert [off for off, _ in ranges] == [i * chunk for i in range(len(ranges))]
    assert sum(d for _, d in ranges) == pytest.approx(duration)
    for prev, nxt in zip(ranges, ranges[1:]):
        assert prev[0] + prev[1] == nxt[0]
    last = ranges[-1][1]
    remainder = duration - (duration // chunk) * chunk
    assert last == pytest.approx(remainder if remainder else min(chunk, duration))


def test_plan_chunks_rejects_non_positive_chunk():
    with pytest.raises(ValueError):
        plan_chunks(100, 0)


def test_guess_mime_type():
    assert guess_mime_type("talk.MP3") == "audio/mpeg"
    assert guess_mime_type("a.m4a") == "audio/mp4"
    assert guess_mime_type("a.webm") == "audio/webm"
    assert guess_mime_type("noext") == "audio/mpeg"


class _Completed:
    def __init__(self, stdout=""):
        self.stdout = stdout
        self.stderr = ""


def test_duration_probe(monkeypatch):
    monkeypatch.setattr(audio_utils.subprocess, "run", lambda *a, **k: _Completed("1500.25\n"))
    assert get_audio_duration_s("x.mp3") == pytest.approx(1500.25)


@pytest.mark.parametrize("stdout", ["", "N/A", "0"])
def test_duration_probe_unusable_output(monkeypatch, stdout):
    monkeypatch.setattr(audio_utils.subprocess, "run", lambda *a, **k: _Completed(stdout))
    assert get_audio_duration_s("x.mp3") is None


def test_duration_probe_fails_soft(monkeypatch):
    def boom(*a, **k):
        raise FileNotFoundError("ffprobe")

    monkeypatch.setattr(audio_utils.subprocess, "run", boom)
    assert get_audio_duration_s("x.mp3") is None


def test_short_audio_is_its_own_chunk(audio_file, monkeypatch):
    monkeypatch.setattr(audio_utils.shutil, "which", lambda name: "/usr/bin/" + name)
    chunks = split_audio_into_chunks(audio_file, 600, duration_s=300)
    assert len(chunks) == 1
    assert chunks[0].path == audio_file
    assert chunks[0].is_source
    assert chunks[0].offset_s == 0


def test_unknown_duration_is_single_chunk(audio_file):
    chunks = split_audio_into_chunks(audio_file, 600, duration_s=None, probe=False)
    assert len(chunks) == 1 and chunks[0].is_source and chunks[0].duration_s is None


def test_missing_ffmpeg_is_single_chunk(audio_file, monkeypatch):
    monkeypatch.setattr(audio_utils.shutil, "which", lambda name: None)
    chunks = split_audio_into_chunks(audio_file, 600, duration_s=1500)
    assert len(chunks) == 1 and chunks[0].is_source


def test_split_materializes_chunks(audio_file, tmp_path, monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        with open(cmd[-1], "wb") as f:
            f.write(b"chunk")
        return _Completed()

    monkeypatch.setattr(audio_utils.shutil, "which", lambda name: "/usr/bin/" + name)
    monkeypatch.setattr(audio_utils.subprocess, "run", fake_run)
    out_dir = tmp_path / "chunks"

    chunks = split_audio_into_chunks(audio_file, 600, tmp_dir=str(out_dir), duration_s=1500)

    assert [c.index for c in chunks] == [0, 1, 2]
    assert [c.offset_s for c in chunks] == [0, 600, 1200]
    assert [c.duration_s for c in chunks] == [600, 600, 300]
    assert not any(c.is_source for c in chunks)
    assert [c.path for c in chunks] == [str(out_dir / f"meeting_chunk_{i}.mp3") for i in range(3)]
    assert all((out_dir / f"meeting_chunk_{i}.mp3").exists() for i in range(3))
    # -ss <offset> ... -t <duration>
    assert calls[2][calls[2].index("-ss") + 1] == "1200.000"
    assert calls[2][calls[2].index("-t") + 1] == "300.000"


def test_split_failure_removes_partial_chunks(audio_file, tmp_path, monkeypatch):
    def fake_run(cmd, **kwargs):
        if cmd[cmd.index("-ss") + 1] == "600.000":
            raise subprocess.CalledProcessError(1, cmd, stderr="bad input")
        with open(cmd[-1], "wb") as f:
            f.write(b"chunk")
        return _Completed()

    monkeypatch.setattr(audio_utils.shutil, "which", lambda name: "/usr/bin/" + name)
    monkeypatch.setattr(audio_utils.subprocess, "run", fake_run)

    with pytest.raises(AudioSplitError, match="chunk 1"):
        split_audio_into_chunks(audio_file, 600, tmp_dir=str(tmp_path / "c"), duration_s=1500)
    assert not (tmp_path / "c" / "meeting_chunk_0.mp3").exists()
