"""Main audio processing pipeline.

Probes and splits the source, transcribes chunks in fixed-size concurrent
windows, shifts each chunk's timecodes by its offset and merges everything
into one transcript written to the task store. A chunk that exhausts its
retries is dropped from the merge; the task fails only when no chunk
produced segments.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Set

from .audio_utils import (
    get_audio_duration_s,
    guess_mime_type,
    remove_file_quietly,
    split_audio_into_chunks,
)
from .config import TranscriptionConfig, load_config
from .exceptions import ConfigurationError, TranscriptionError
from .gemini_client import ChunkTranscriber, GeminiFileService, TranscriptionService
from .models import AudioChunk, ChunkOutcome, ChunkResult, ChunkStatus, Segment, TaskStatus, TranscriptionResult
from .task_store import TaskStore
from .timecodes import offset_timecode, parse_timecode

logger = logging.getLogger(__name__)

PROGRESS_START_PCT = 15
PROGRESS_SPAN_PCT = 75


def progress_percent(completed: int, total: int) -> int:
    return PROGRESS_START_PCT + round(PROGRESS_SPAN_PCT * completed / total)


def merge_chunk_results(
    chunks: Sequence[AudioChunk],
    results: Sequence[Optional[ChunkResult]],
) -> TranscriptionResult:
    """Merge per-chunk results onto the global timeline in chunk order.

    Failed chunks (``None``) are skipped. Summaries are joined by a blank
    line, the last non-empty language wins and the speaker count is the
    maximum seen (at least 1). Speaker labels stay chunk-local. A segment
    ending before it starts is clamped to zero length.
    """
    segments: List[Segment] = []
    summaries: List[str] = []
    language = ""
    speakers = 0
    for chunk, res in zip(chunks, results):
        if res is None or not res.segments:
            continue
        for seg in res.segments:
            start = offset_timecode(seg.start, chunk.offset_s)
            end = offset_timecode(seg.end, chunk.offset_s)
            if parse_timecode(end) < parse_timecode(start):
                end = start
            segments.append(Segment(start=start, end=end, text=seg.text, speaker=seg.speaker))
        if res.summary:
            summaries.append(res.summary)
        if res.detected_language:
            language = res.detected_language
        if res.speakers_count:
            speakers = max(speakers, res.speakers_count)
    return TranscriptionResult(
        segments=segments,
        summary="\n\n".join(summaries),
        detected_language=language,
        speakers_count=speakers or 1,
    )


class ProgressReporter:
    """Fire-and-forget status-message writes for one task.

    Writes run as background tasks so they never hold up chunk dispatch;
    failures are logged. ``drain`` waits for outstanding writes and must be
    awaited before the terminal write.
    """

    def __init__(self, task_store: TaskStore, task_id: str):
        self.task_store = task_store
        self.task_id = task_id
        self._pending: Set[asyncio.Task] = set()

    def report(self, message: str, progress: Optional[int] = None) -> None:
        fields: Dict[str, Any] = {"error_message": message}
        if progress is not None:
            fields["progress"] = progress
        task = asyncio.create_task(self._write(fields))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, fields: Dict[str, Any]) -> None:
        try:
            await self.task_store.update_task(self.task_id, fields)
        except Exception as e:
            logger.warning(f"[TASK] {self.task_id} progress update failed: {e}")

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))


class TranscriptionPipeline:
    """Runs one task from source file to terminal status in the task store."""

    def __init__(
        self,
        config: TranscriptionConfig,
        task_store: TaskStore,
        service: Optional[TranscriptionService] = None,
        transcriber: Optional[ChunkTranscriber] = None,
    ):
        self.config = config
        self.task_store = task_store
        self.service = service
        self.transcriber = transcriber

    def _build_transcriber(self) -> ChunkTranscriber:
        if self.transcriber is not None:
            return self.transcriber
        service = self.service or GeminiFileService.from_config(self.config)
        return ChunkTranscriber.from_config(service, self.config)

    async def _dispatch(
        self,
        transcriber: ChunkTranscriber,
        chunks: List[AudioChunk],
        file_name: str,
        mime_type: str,
        reporter: ProgressReporter,
    ) -> List[Optional[ChunkOutcome]]:
        total = len(chunks)
        outcomes: List[Optional[ChunkOutcome]] = [None] * total
        completed = 0

        async def _process(pos: int, chunk: AudioChunk) -> None:
            nonlocal completed
            part = f"part {pos + 1} of {total}"
            display_name = file_name if total == 1 else f"{file_name} ({part})"
            reporter.report("Sending to AI..." if total == 1 else f"Processing {part}...")
            outcomes[pos] = await transcriber.transcribe_chunk(chunk, display_name, mime_type)
            completed += 1
            pct = progress_percent(completed, total)
            reporter.report(f"Processing {part}... ({pct}%)", progress=pct)

        window = self.config.concurrency
        for start in range(0, total, window):
            batch = chunks[start:start + window]
            # the whole window resolves before the next one is dispatched
            results = await asyncio.gather(
                *(_process(start + j, c) for j, c in enumerate(batch)),
                return_exceptions=True,
            )
            for j, (chunk, res) in enumerate(zip(batch, results)):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                if isinstance(res, BaseException):
                    logger.error(f"[TR] chunk {chunk.index} crashed: {res!r}")
                    if not chunk.is_source:
                        remove_file_quietly(chunk.path)
                    outcomes[start + j] = ChunkOutcome(
                        index=chunk.index,
                        status=ChunkStatus.SERVICE_FAILED,
                        reason=str(res) or type(res).__name__,
                    )
        return outcomes

    async def _fail(self, task_id: str, message: str) -> None:
        try:
            await self.task_store.update_task(
                task_id, {"status": TaskStatus.FAILED.value, "error_message": message}
            )
        except Exception as e:
            logger.error(f"[TASK] {task_id} cannot record failure '{message}': {e}")

    async def run(
        self,
        task_id: str,
        source_path: str,
        file_name: str,
        mime_type: Optional[str] = None,
    ) -> Optional[TranscriptionResult]:
        """Process ``source_path`` for ``task_id``; returns the merged result or None on failure."""
        t0 = time.monotonic()
        mime_type = mime_type or guess_mime_type(file_name)
        try:
            transcriber = self._build_transcriber()
        except ConfigurationError as e:
            logger.error(f"[TASK] {task_id} configuration error: {e}")
            await self._fail(task_id, str(e))
            return None

        reporter = ProgressReporter(self.task_store, task_id)
        chunks: List[AudioChunk] = []
        try:
            reporter.report("Analyzing audio file...")
            duration_s = await asyncio.to_thread(get_audio_duration_s, source_path)
            reporter.report("Preparing fragments...")
            chunks = await asyncio.to_thread(
                split_audio_into_chunks,
                source_path,
                self.config.chunk_duration_s,
                self.config.tmp_dir,
                duration_s,
                False,
            )
            logger.info(f"[TASK] {task_id} {len(chunks)} chunks, window {self.config.concurrency}")

            outcomes = await self._dispatch(transcriber, chunks, file_name, mime_type, reporter)
            reporter.report("Assembling result...")
            results = [o.result if o is not None and o.ok else None for o in outcomes]
            dropped = sum(1 for r in results if r is None)
            if dropped:
                logger.warning(f"[MERGE] {task_id} dropped {dropped}/{len(chunks)} chunks")
            merged = merge_chunk_results(chunks, results)
            if not merged.segments:
                raise TranscriptionError("No fragment produced segments")

            if not (len(chunks) == 1 and chunks[0].is_source):
                remove_file_quietly(source_path)

            processed_s = round(time.monotonic() - t0)
            await reporter.drain()
            await self.task_store.update_task(
                task_id,
                {
                    "status": TaskStatus.COMPLETED.value,
                    "error_message": None,
                    "result": merged.to_dict(),
                    "language": merged.detected_language or None,
                    "speakers_count": merged.speakers_count,
                    "processed_at": processed_s,
                    "progress": 100,
                },
            )
            logger.info(f"[TASK] {task_id} completed {len(merged.segments)} segments {processed_s}s")
            return merged
        except Exception as e:
            logger.exception(f"[TASK] {task_id} pipeline error: {e}")
            await reporter.drain()
            await self._fail(task_id, str(e) or type(e).__name__)
            for chunk in chunks:
                if not chunk.is_source:
                    remove_file_quietly(chunk.path)
            remove_file_quietly(source_path)
            return None


async def run_transcription(
    task_id: str,
    source_path: str,
    file_name: str,
    task_store: TaskStore,
    mime_type: Optional[str] = None,
    config: Optional[TranscriptionConfig] = None,
) -> Optional[TranscriptionResult]:
    """Build a Gemini-backed pipeline from config and run it for one task."""
    if config is None:
        config = load_config()
    pipeline = TranscriptionPipeline(config, task_store)
    return await pipeline.run(task_id, source_path, file_name, mime_type)
