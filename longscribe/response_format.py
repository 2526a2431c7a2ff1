"""Validation and repair of the model's JSON transcription output."""

import json
import logging
from typing import Any, List, Optional

import json_repair

from .models import ChunkResult, Segment

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove Markdown fences that break JSON parsing."""
    t = (text or "").strip()
    if not t.startswith("```"):
        return t
    lines = t.splitlines()
    if lines and lines[0].startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def _coerce_count(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return count if count > 0 else None


def _coerce_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_segments(raw: Any) -> List[Segment]:
    if not isinstance(raw, list):
        return []
    segments: List[Segment] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        seg = Segment.from_dict(entry)
        if seg.text:
            segments.append(seg)
    return segments


def to_chunk_result(data: Any) -> Optional[ChunkResult]:
    """Build a ChunkResult from decoded JSON; None without usable segments."""
    if isinstance(data, list):
        # Bare segment list, seen when the schema is not enforced
        data = {"segments": data}
    if not isinstance(data, dict):
        return None
    segments = _parse_segments(data.get("segments"))
    if not segments:
        return None
    language = data.get("detected_language", data.get("language"))
    count = data.get("speakers_count", data.get("speakersCount"))
    return ChunkResult(
        segments=segments,
        summary=_coerce_text(data.get("summary")),
        detected_language=_coerce_text(language),
        speakers_count=_coerce_count(count),
    )


def _build_result(data: Any) -> Optional[ChunkResult]:
    try:
        return to_chunk_result(data)
    except Exception as e:
        logger.debug(f"[PARSE] unusable reply structure: {e}")
        return None


def parse_chunk_response(raw_text: Optional[str]) -> Optional[ChunkResult]:
    """Parse raw model output, repairing malformed JSON once if needed.

    Returns None when the output is empty, unsalvageable, or has no segments.
    Never raises.
    """
    text = strip_code_fences(raw_text or "")
    if not text:
        return None

    try:
        data = json.loads(text)
    except ValueError:
        data = None
    result = _build_result(data) if data is not None else None
    if result is not None:
        return result

    try:
        repaired = json_repair.repair_json(text)
        data = json.loads(repaired) if repaired else None
    except Exception as e:
        logger.debug(f"[PARSE] repair failed: {e}")
        return None
    result = _build_result(data)
    if result is None:
        logger.debug("[PARSE] empty or invalid segments after repair")
    return result
