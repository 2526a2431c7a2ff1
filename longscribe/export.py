"""SRT and plain-text document rendering of merged transcripts."""

import logging
import re
from typing import List, Optional, Sequence

from .models import Segment
from .response_format import parse_chunk_response
from .timecodes import to_srt_timestamp

logger = logging.getLogger(__name__)

TEXT_VALUE_RE = re.compile(r'"text"\s*:\s*"((?:[^"\\]|\\.)*)"')


def sanitize_segment_text(text: Optional[str]) -> str:
    """Strip raw model JSON out of a segment's text, keeping only the spoken words."""
    t = (text or "").strip()
    if not (t.startswith("{") or '"segments"' in t or '"text":"' in t):
        return t
    values = []
    for m in TEXT_VALUE_RE.finditer(t):
        value = m.group(1).replace('\\"', '"').replace("\\n", "\n").strip()
        if value:
            values.append(value)
    return "\n".join(values) if values else t


def normalize_segments(segments: Optional[Sequence[Segment]]) -> List[Segment]:
    """Recover segments from results that stored the raw model reply as one segment."""
    items = list(segments or [])
    if len(items) == 1:
        text = items[0].text.strip()
        if text.startswith("{") and '"segments"' in text:
            recovered = parse_chunk_response(text)
            if recovered is not None:
                logger.info(f"[EXPORT] recovered {len(recovered.segments)} segments from raw JSON")
                items = recovered.segments
    return [
        Segment(start=s.start, end=s.end, text=sanitize_segment_text(s.text), speaker=s.speaker)
        for s in items
    ]


def build_srt(segments: Sequence[Segment]) -> str:
    """Render SubRip blocks: index, ``HH:MM:SS,mmm --> HH:MM:SS,mmm``, text."""
    blocks = [
        f"{i}\n{to_srt_timestamp(seg.start)} --> {to_srt_timestamp(seg.end)}\n{seg.text.strip()}\n"
        for i, seg in enumerate(segments, start=1)
    ]
    return "\n".join(blocks) + "\n"


def format_document_line(seg: Segment, with_timestamps: bool = True) -> str:
    speaker = f"{seg.speaker}: " if seg.speaker else ""
    if with_timestamps:
        return f"[{seg.start} - {seg.end}] {speaker}{seg.text}"
    return f"{speaker}{seg.text}"


def build_document_lines(
    segments: Sequence[Segment],
    with_timestamps: bool = True,
    summary: Optional[str] = None,
) -> List[str]:
    """Lines of a readable transcript document, with an optional summary block first."""
    lines: List[str] = []
    if summary:
        lines.extend(["Summary", summary, ""])
    lines.append("Transcript")
    lines.extend(format_document_line(seg, with_timestamps) for seg in segments)
    return lines


def write_srt(path: str, segments: Sequence[Segment]) -> str:
    with open(path, "w", encoding="utf-8") as f:
        f.write(build_srt(segments))
    return path


def write_document(path: str, lines: Sequence[str]) -> str:
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")
    return path
