"""Data models for the chunked transcription pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class AudioChunk:
    """A contiguous slice of the source audio, materialized as its own file.

    ``is_source`` is True when the chunk is the original upload itself
    (short or unprobeable audio is never re-encoded).
    """
    index: int
    offset_s: float
    duration_s: Optional[float]
    path: str
    is_source: bool = False


@dataclass
class Segment:
    """One utterance with HH:MM:SS timecodes and an optional speaker label."""
    start: str
    end: str
    text: str
    speaker: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Segment":
        speaker = data.get("speaker")
        speaker = str(speaker).strip() if speaker is not None else ""
        return cls(
            start=str(data.get("start") or "00:00:00"),
            end=str(data.get("end") or "00:00:00"),
            text=str(data.get("text") or "").strip(),
            speaker=speaker or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"start": self.start, "end": self.end}
        if self.speaker:
            out["speaker"] = self.speaker
        out["text"] = self.text
        return out


@dataclass
class ChunkResult:
    """Parsed model output for one chunk. Timecodes are chunk-local."""
    segments: List[Segment] = field(default_factory=list)
    summary: Optional[str] = None
    detected_language: Optional[str] = None
    speakers_count: Optional[int] = None


@dataclass
class TranscriptionResult:
    """Merged transcript on the global timeline."""
    segments: List[Segment] = field(default_factory=list)
    summary: str = ""
    detected_language: str = ""
    speakers_count: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segments": [s.to_dict() for s in self.segments],
            "summary": self.summary,
            "detected_language": self.detected_language or None,
            "speakers_count": self.speakers_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptionResult":
        return cls(
            segments=[Segment.from_dict(s) for s in data.get("segments") or []],
            summary=data.get("summary") or "",
            detected_language=data.get("detected_language") or "",
            speakers_count=int(data.get("speakers_count") or 1),
        )


class TaskStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Task:
    """Typed view of a task-store record.

    While a task is processing, ``error_message`` carries the human progress
    string; it is exposed here as ``status_message``.
    """
    id: str
    status: TaskStatus
    file_name: Optional[str] = None
    status_message: Optional[str] = None
    error_message: Optional[str] = None
    result: Optional[TranscriptionResult] = None
    language: Optional[str] = None
    speakers_count: Optional[int] = None
    processed_at: Optional[int] = None
    progress: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Task":
        status = TaskStatus(record.get("status") or TaskStatus.PROCESSING.value)
        message = record.get("error_message")
        result = record.get("result")
        return cls(
            id=str(record["id"]),
            status=status,
            file_name=record.get("file_name"),
            status_message=message if status == TaskStatus.PROCESSING else None,
            error_message=message if status == TaskStatus.FAILED else None,
            result=TranscriptionResult.from_dict(result) if result else None,
            language=record.get("language"),
            speakers_count=record.get("speakers_count"),
            processed_at=record.get("processed_at"),
            progress=record.get("progress"),
        )


class ChunkStatus(str, Enum):
    OK = "ok"
    PARSE_FAILED = "parse_failed"
    SERVICE_FAILED = "service_failed"


@dataclass
class ChunkOutcome:
    """Terminal (or per-attempt) outcome of transcribing one chunk."""
    index: int
    status: ChunkStatus
    result: Optional[ChunkResult] = None
    reason: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ChunkStatus.OK and self.result is not None


@dataclass
class RemoteFile:
    """Handle to a file uploaded to the transcription service."""
    name: str
    uri: str
    mime_type: str
