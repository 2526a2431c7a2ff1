import asyncio
import json
import os
import sys
from typing import Any, Dict, List, Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from longscribe.gemini_client import TranscriptionService  # noqa: E402
from longscribe.models import RemoteFile  # noqa: E402


def chunk_reply(segments, summary="", language="en", speakers=1) -> str:
    """Serialize a model reply the way the structured-output API returns it."""
    return json.dumps(
        {
            "segments": [
                {"start": s, "end": e, "speaker": spk, "text": t} for (s, e, spk, t) in segments
            ],
            "summary": summary,
            "detected_language": language,
            "speakers_count": speakers,
        }
    )


DEFAULT_REPLY = chunk_reply([("00:00:01", "00:00:03", "Speaker A", "Hello there.")])


class FakeService(TranscriptionService):
    """In-process stand-in for the Gemini file + generate API.

    ``replies`` maps a local file path to a list of per-attempt replies: a
    string is returned as the raw model text, an exception is raised from
    ``generate``. The last reply repeats once the list is exhausted.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, List[Any]]] = None,
        states: Optional[List[str]] = None,
        delays: Optional[Dict[str, float]] = None,
        upload_error: Optional[Exception] = None,
    ):
        self.replies = replies or {}
        self.states = states
        self.delays = delays or {}
        self.upload_error = upload_error
        self.uploads: List[str] = []
        self.deleted: List[str] = []
        self.state_calls = 0
        self.in_flight = 0
        self.peak_in_flight = 0
        self._paths: Dict[str, str] = {}
        self._attempts: Dict[str, int] = {}

    async def upload(self, path, mime_type, display_name):
        await asyncio.sleep(0)
        if self.upload_error is not None:
            raise self.upload_error
        name = f"files/{len(self.uploads)}"
        self.uploads.append(path)
        self._paths[name] = path
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        return RemoteFile(name=name, uri=f"uri://{name}", mime_type=mime_type)

    async def get_state(self, name):
        self.state_calls += 1
        if not self.states:
            return "ACTIVE"
        return self.states[min(self.state_calls - 1, len(self.states) - 1)]

    async def generate(self, file_uri, mime_type, prompt, response_schema):
        path = self._paths[file_uri.replace("uri://", "")]
        await asyncio.sleep(self.delays.get(path, 0))
        attempt = self._attempts.get(path, 0)
        self._attempts[path] = attempt + 1
        script = self.replies.get(path, [DEFAULT_REPLY])
        reply = script[min(attempt, len(script) - 1)]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def delete(self, name):
        await asyncio.sleep(0)
        self.deleted.append(name)
        self.in_flight -= 1


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "meeting.mp3"
    path.write_bytes(b"\x00" * 2048)
    return str(path)
