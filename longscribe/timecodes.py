"""Timecode parsing, offsetting and normalization.

Chunk transcripts carry chunk-local ``HH:MM:SS`` timecodes; merging shifts
them onto the global timeline by the chunk's start offset. Export needs the
same parser to render subtitle timestamps.
"""

import re
from typing import Any, Optional

# H:MM:SS or MM:SS with optional ",mmm" / ".mmm" fraction; hours are uncapped.
# Tolerates a single wrapping bracket, as models sometimes emit "[00:01:30]".
TIME_COLON_RE = re.compile(
    r"^\s*[\[\(<]?\s*(?:(\d+):)?(\d{1,2}):(\d{1,2})(?:[.,](\d+))?\s*[\]\)>]?\s*$"
)
SECONDS_RE = re.compile(r"^\s*(\d+(?:[.,]\d+)?)\s*s?\s*$")


def parse_timecode(value: Any) -> Optional[float]:
    """Parse a timecode into seconds; ``None`` when it is not a timecode.

    Accepted examples: ``01:02:03``, ``01:02:03,456``, ``01:02:03.4``,
    ``02:15``, ``[00:01:30]``, ``95``, ``95.5``, ``12s`` and plain numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    if not isinstance(value, str):
        return None
    v = value.strip()
    if not v:
        return None

    m = TIME_COLON_RE.match(v)
    if m:
        h = int(m.group(1) or 0)
        mins = int(m.group(2))
        s = int(m.group(3))
        frac = m.group(4) or ""
        frac_s = int(frac) / (10 ** len(frac)) if frac else 0.0
        return h * 3600 + mins * 60 + s + frac_s

    m = SECONDS_RE.match(v)
    if m:
        return float(m.group(1).replace(",", "."))
    return None


def format_timecode(seconds: float) -> str:
    """Render seconds as zero-padded ``HH:MM:SS``, truncating fractions."""
    total = int(seconds) if seconds > 0 else 0
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    return f"{h:02d}:{m:02d}:{s:02d}"


def offset_timecode(timecode: Any, offset_s: float) -> str:
    """Shift a chunk-local timecode by ``offset_s`` seconds.

    Unparseable input is treated as the start of the chunk.
    """
    base = parse_timecode(timecode)
    if base is None:
        base = 0.0
    return format_timecode(base + offset_s)


def normalize_timecode(value: Any) -> str:
    """Canonicalize any accepted timecode form to ``HH:MM:SS``."""
    seconds = parse_timecode(value)
    return format_timecode(seconds if seconds is not None else 0.0)


def to_srt_timestamp(value: Any) -> str:
    """Render a timecode as an SRT timestamp ``HH:MM:SS,mmm``."""
    seconds = parse_timecode(value) or 0.0
    total_ms = int(round(seconds * 1000))
    ms = total_ms % 1000
    return f"{format_timecode(total_ms // 1000)},{ms:03d}"
