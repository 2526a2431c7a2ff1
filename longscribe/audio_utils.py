"""Audio probing, chunk planning and ffmpeg-based splitting."""

import logging
import math
import os
import shutil
import subprocess
from typing import List, Optional, Tuple

from .exceptions import AudioSplitError
from .models import AudioChunk

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".oga": "audio/ogg",
    ".webm": "audio/webm",
    ".flac": "audio/flac",
}
DEFAULT_MIME_TYPE = "audio/mpeg"


def guess_mime_type(file_name: str) -> str:
    """Guess the MIME type of an audio file from its extension."""
    ext = os.path.splitext(file_name)[1].lower()
    return MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)


def get_audio_duration_s(audio_path: str) -> Optional[float]:
    """Return audio duration in seconds via ffprobe; None if unavailable."""
    try:
        result = subprocess.run(
            [
                "ffprobe", "-v", "error", "-show_entries", "format=duration",
                "-of", "default=nw=1:nk=1", audio_path,
            ],
            capture_output=True, text=True, check=True,
        )
        val = result.stdout.strip()
        if not val:
            return None
        seconds = float(val)
        return seconds if seconds > 0 else None
    except Exception as e:
        logger.warning(f"[PROBE] duration unavailable for {audio_path}: {e}")
        return None


def plan_chunks(duration_s: float, chunk_duration_s: float) -> List[Tuple[float, float]]:
    """Plan contiguous, non-overlapping (offset, duration) ranges covering the source.

    The last range holds the remainder and may be shorter than ``chunk_duration_s``.
    """
    if chunk_duration_s <= 0:
        raise ValueError("chunk_duration_s must be > 0")
    if duration_s <= chunk_duration_s:
        return [(0, duration_s)]
    count = math.ceil(duration_s / chunk_duration_s)
    ranges = []
    for i in range(count):
        offset = i * chunk_duration_s
        ranges.append((offset, min(chunk_duration_s, duration_s - offset)))
    return ranges


def remove_file_quietly(path: str) -> None:
    """Delete a local file; failures are logged, never raised."""
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"[CLEANUP] cannot delete {path}: {e}")


def _cut_chunk(source_path: str, chunk_path: str, offset_s: float, duration_s: float) -> None:
    cmd = [
        "ffmpeg", "-y", "-nostdin", "-loglevel", "error",
        "-ss", f"{offset_s:.3f}",
        "-i", source_path,
        "-t", f"{duration_s:.3f}",
        "-vn", "-sn", "-dn",
        "-map", "0:a:0",
        "-c:a", "copy",
        chunk_path,
    ]
    subprocess.run(cmd, check=True, capture_output=True, text=True)


def split_audio_into_chunks(
    source_path: str,
    chunk_duration_s: float,
    tmp_dir: Optional[str] = None,
    duration_s: Optional[float] = None,
    probe: bool = True,
) -> List[AudioChunk]:
    """Split audio into fixed-duration chunks without overlap.

    Returns the source itself as a single chunk when its duration is unknown,
    fits into one chunk, or ffmpeg is not installed. Otherwise writes
    ``<base>_chunk_<i><ext>`` files into ``tmp_dir`` (default: next to the
    source); the caller owns their deletion. With ``probe=False`` a missing
    ``duration_s`` is taken as unknown instead of being probed.
    """
    if chunk_duration_s <= 0:
        raise ValueError("chunk_duration_s must be > 0")
    if duration_s is None and probe:
        duration_s = get_audio_duration_s(source_path)

    if duration_s is None or duration_s <= chunk_duration_s or shutil.which("ffmpeg") is None:
        logger.info(f"[SPLIT] skip {os.path.basename(source_path)}: 1 chunk")
        return [AudioChunk(index=0, offset_s=0, duration_s=duration_s, path=source_path, is_source=True)]

    out_dir = tmp_dir or os.path.dirname(os.path.abspath(source_path))
    os.makedirs(out_dir, exist_ok=True)
    base, ext = os.path.splitext(os.path.basename(source_path))

    chunks: List[AudioChunk] = []
    for i, (offset, length) in enumerate(plan_chunks(duration_s, chunk_duration_s)):
        chunk_path = os.path.join(out_dir, f"{base}_chunk_{i}{ext}")
        try:
            _cut_chunk(source_path, chunk_path, offset, length)
        except (subprocess.CalledProcessError, OSError) as e:
            for c in chunks:
                remove_file_quietly(c.path)
            remove_file_quietly(chunk_path)
            stderr = getattr(e, "stderr", None) or e
            raise AudioSplitError(f"Splitting failed at chunk {i}: {stderr}") from e
        chunks.append(AudioChunk(index=i, offset_s=offset, duration_s=length, path=chunk_path))

    logger.info(f"[SPLIT] ready {len(chunks)} chunks of {chunk_duration_s}s ({duration_s:.1f}s total)")
    return chunks
