"""Handles interaction with the Gemini API for chunk transcription.

Each chunk goes through upload -> wait for processing -> structured
generation -> remote cleanup, retried from a fresh upload with exponential
backoff when any step fails or the output cannot be parsed.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from google import genai
from google.genai import types

from .audio_utils import remove_file_quietly
from .config import TranscriptionConfig
from .exceptions import RemoteProcessingError
from .models import AudioChunk, ChunkOutcome, ChunkStatus, RemoteFile
from .response_format import parse_chunk_response

logger = logging.getLogger(__name__)

STATE_PROCESSING = "PROCESSING"
STATE_ACTIVE = "ACTIVE"
STATE_FAILED = "FAILED"

TRANSCRIPTION_PROMPT = """Role: Professional transcriber with speaker diarization.
Task: Transcribe the audio and label speakers as Speaker A, Speaker B, Speaker C and so on.

Requirements:
1. Detect every change of voice and switch the speaker label accordingly.
2. Never merge different people into one speaker.
3. Timestamps must be strictly HH:MM:SS, measured from the start of this audio.
4. For every phrase provide start, end, speaker and text.
5. Add a brief summary in the language of the audio, the detected language code and the number of speakers.
"""

TRANSCRIPTION_RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    description="Transcription with timed, speaker-labeled segments and a summary",
    properties={
        "segments": types.Schema(
            type=types.Type.ARRAY,
            description="Phrases with timecodes and speakers",
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "start": types.Schema(type=types.Type.STRING, description="Phrase start (HH:MM:SS)"),
                    "end": types.Schema(type=types.Type.STRING, description="Phrase end (HH:MM:SS)"),
                    "speaker": types.Schema(type=types.Type.STRING, description="Speaker label (Speaker A, B...)"),
                    "text": types.Schema(type=types.Type.STRING, description="Phrase text"),
                },
                required=["start", "end", "speaker", "text"],
            ),
        ),
        "summary": types.Schema(type=types.Type.STRING, description="Short summary in the audio language"),
        "detected_language": types.Schema(type=types.Type.STRING, description="Language code (en, ru...)"),
        "speakers_count": types.Schema(type=types.Type.NUMBER, description="Number of speakers"),
    },
    required=["segments", "summary", "detected_language", "speakers_count"],
)


class TranscriptionService(ABC):
    """Remote file + generation API used to transcribe one chunk."""

    @abstractmethod
    async def upload(self, path: str, mime_type: str, display_name: str) -> RemoteFile:
        pass

    @abstractmethod
    async def get_state(self, name: str) -> str:
        """Return PROCESSING, ACTIVE or FAILED."""
        pass

    @abstractmethod
    async def generate(self, file_uri: str, mime_type: str, prompt: str, response_schema: Any) -> str:
        pass

    @abstractmethod
    async def delete(self, name: str) -> None:
        pass


def _state_name(state: Any) -> str:
    if state is None:
        return ""
    return str(getattr(state, "value", state)).upper()


class GeminiFileService(TranscriptionService):
    """TranscriptionService backed by the google-genai async client."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash"):
        self.client = genai.Client(api_key=api_key)
        self.model = model

    @classmethod
    def from_config(cls, config: TranscriptionConfig) -> "GeminiFileService":
        return cls(api_key=config.require_api_key(), model=config.model)

    async def upload(self, path: str, mime_type: str, display_name: str) -> RemoteFile:
        uploaded = await self.client.aio.files.upload(
            file=path,
            config=types.UploadFileConfig(mime_type=mime_type, display_name=display_name),
        )
        return RemoteFile(
            name=uploaded.name,
            uri=uploaded.uri,
            mime_type=uploaded.mime_type or mime_type,
        )

    async def get_state(self, name: str) -> str:
        current = await self.client.aio.files.get(name=name)
        return _state_name(current.state)

    async def generate(self, file_uri: str, mime_type: str, prompt: str, response_schema: Any) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=[
                types.Content(
                    role="user",
                    parts=[
                        types.Part.from_uri(file_uri=file_uri, mime_type=mime_type),
                        types.Part.from_text(text=prompt),
                    ],
                )
            ],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=response_schema,
            ),
        )
        return (getattr(response, "text", None) or "").strip()

    async def delete(self, name: str) -> None:
        await self.client.aio.files.delete(name=name)


class ChunkTranscriber:
    """Transcribes single chunks with bounded retries and exponential backoff."""

    def __init__(
        self,
        service: TranscriptionService,
        max_retries: int = 2,
        poll_interval_s: float = 2.0,
        poll_max_attempts: int = 60,
        backoff_base_s: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.service = service
        self.max_retries = max_retries
        self.poll_interval_s = poll_interval_s
        self.poll_max_attempts = poll_max_attempts
        self.backoff_base_s = backoff_base_s
        self.sleep = sleep

    @classmethod
    def from_config(cls, service: TranscriptionService, config: TranscriptionConfig) -> "ChunkTranscriber":
        return cls(
            service,
            max_retries=config.max_retries,
            poll_interval_s=config.poll_interval_s,
            poll_max_attempts=config.poll_max_attempts,
            backoff_base_s=config.backoff_base_s,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the failed 0-based ``attempt``: 2s, 4s, 8s..."""
        return (2 ** attempt) * self.backoff_base_s

    @asynccontextmanager
    async def uploaded(self, path: str, mime_type: str, display_name: str) -> AsyncIterator[RemoteFile]:
        """Upload a file and always delete the remote copy when the block exits."""
        remote = await self.service.upload(path, mime_type, display_name)
        try:
            yield remote
        finally:
            try:
                await self.service.delete(remote.name)
            except Exception as e:
                logger.warning(f"[TR] cannot delete remote file {remote.name}: {e}")

    async def wait_until_active(self, remote: RemoteFile) -> None:
        """Poll the remote processing state until ACTIVE, FAILED or the ceiling."""
        state = await self.service.get_state(remote.name)
        polls = 0
        while state == STATE_PROCESSING and polls < self.poll_max_attempts:
            await self.sleep(self.poll_interval_s)
            state = await self.service.get_state(remote.name)
            polls += 1
        if state == STATE_FAILED:
            raise RemoteProcessingError(f"File processing failed for {remote.name}")
        if state != STATE_ACTIVE:
            raise RemoteProcessingError(f"File state: {state or 'unknown'} after {polls} polls")

    async def _attempt(self, chunk: AudioChunk, display_name: str, mime_type: str) -> ChunkOutcome:
        try:
            async with self.uploaded(chunk.path, mime_type, display_name) as remote:
                await self.wait_until_active(remote)
                raw_text = await self.service.generate(
                    remote.uri, remote.mime_type, TRANSCRIPTION_PROMPT, TRANSCRIPTION_RESPONSE_SCHEMA
                )
        except Exception as e:
            return ChunkOutcome(index=chunk.index, status=ChunkStatus.SERVICE_FAILED, reason=str(e) or type(e).__name__)

        result = parse_chunk_response(raw_text)
        if result is None:
            return ChunkOutcome(
                index=chunk.index,
                status=ChunkStatus.PARSE_FAILED,
                reason="Empty or invalid segments in response",
            )
        return ChunkOutcome(index=chunk.index, status=ChunkStatus.OK, result=result)

    async def transcribe_chunk(self, chunk: AudioChunk, display_name: str, mime_type: str) -> ChunkOutcome:
        """Transcribe one chunk; the local chunk file is deleted on return."""
        outcome: Optional[ChunkOutcome] = None
        try:
            for attempt in range(self.max_retries + 1):
                t0 = time.monotonic()
                outcome = await self._attempt(chunk, display_name, mime_type)
                outcome.attempts = attempt + 1
                duration = time.monotonic() - t0
                if outcome.ok:
                    logger.info(f"[TR] chunk {chunk.index} ok {duration:.1f}s attempt {attempt + 1}")
                    return outcome
                logger.warning(
                    f"[TR] chunk {chunk.index} attempt {attempt + 1}/{self.max_retries + 1} "
                    f"{outcome.status.value} {duration:.1f}s: {outcome.reason}"
                )
                if attempt < self.max_retries:
                    await self.sleep(self.backoff_delay(attempt))
            logger.error(f"[TR] chunk {chunk.index} dropped after {self.max_retries + 1} attempts: {outcome.reason}")
            return outcome
        finally:
            remove_file_quietly(chunk.path)
