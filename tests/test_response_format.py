import json

import json_repair
import pytest

from longscribe.models import ChunkResult, Segment
from longscribe.response_format import parse_chunk_response, strip_code_fences, to_chunk_result

VALID = {
    "segments": [
        {"start": "00:00:01", "end": "00:00:04", "speaker": "Speaker A", "text": "Hello there."},
        {"start": "00:00:05", "end": "00:00:07", "speaker": "Speaker B", "text": "Hi!"},
    ],
    "detected_language": "en",
    "speakers_count": 2,
    "summary": "Two people greet each other",
}

EXPECTED = ChunkResult(
    segments=[
        Segment(start="00:00:01", end="00:00:04", text="Hello there.", speaker="Speaker A"),
        Segment(start="00:00:05", end="00:00:07", text="Hi!", speaker="Speaker B"),
    ],
    summary="Two people greet each other",
    detected_language="en",
    speakers_count=2,
)


def test_valid_json_parses():
    assert parse_chunk_response(json.dumps(VALID)) == EXPECTED


def test_code_fences_are_stripped():
    fenced = "```json\n" + json.dumps(VALID, indent=2) + "\n```"
    assert strip_code_fences(fenced).startswith("{")
    assert parse_chunk_response(fenced) == EXPECTED


def test_unterminated_trailing_string_is_repaired():
    text = json.dumps(VALID)
    # cut inside the final string value: ..."summary": "Two people greet each other
    broken = text[: text.rindex('"')]
    assert broken.endswith("each other")
    assert parse_chunk_response(broken) == EXPECTED


def test_trailing_comma_is_repaired():
    text = json.dumps(VALID)
    broken = text.replace('"Hi!"}]', '"Hi!"},]')
    assert broken != text
    assert parse_chunk_response(broken) == EXPECTED


def test_empty_segments_is_a_failure():
    assert parse_chunk_response(json.dumps({**VALID, "segments": []})) is None
    blank = {**VALID, "segments": [{"start": "00:00:01", "end": "00:00:02", "text": "  "}]}
    assert parse_chunk_response(json.dumps(blank)) is None


def test_unsalvageable_output_is_none():
    assert parse_chunk_response("") is None
    assert parse_chunk_response(None) is None
    assert parse_chunk_response("I'm sorry, I cannot help with that.") is None
    assert parse_chunk_response(json.dumps({"summary": "no segments"})) is None


def test_bare_segment_list_and_legacy_keys():
    bare = json.dumps(VALID["segments"])
    result = parse_chunk_response(bare)
    assert result is not None and len(result.segments) == 2
    assert result.summary is None and result.speakers_count is None

    legacy = {"segments": VALID["segments"], "language": "de", "speakersCount": 3}
    result = parse_chunk_response(json.dumps(legacy))
    assert result.detected_language == "de"
    assert result.speakers_count == 3


def test_field_coercion():
    data = {
        "segments": [{"start": "00:00:01", "end": "00:00:02", "speaker": "", "text": 7}],
        "speakers_count": "2.0",
        "detected_language": "",
        "summary": "   ",
    }
    result = parse_chunk_response(json.dumps(data))
    assert result.segments == [Segment(start="00:00:01", end="00:00:02", text="7", speaker=None)]
    assert result.speakers_count == 2
    assert result.detected_language is None
    assert result.summary is None


def test_repair_path_agrees_with_direct_parse():
    text = json.dumps(VALID)
    via_repair = to_chunk_result(json.loads(json_repair.repair_json(text)))
    assert via_repair == parse_chunk_response(text) == EXPECTED


@pytest.mark.parametrize("count", ["1e999", "-1e999", "Infinity", "NaN"])
def test_non_finite_speaker_count_is_dropped(count):
    raw = (
        '{"segments": [{"start": "00:00:01", "end": "00:00:02", "speaker": "A", "text": "hi"}], '
        '"summary": "", "detected_language": "en", "speakers_count": ' + count + "}"
    )
    result = parse_chunk_response(raw)
    assert result is not None
    assert result.segments[0].text == "hi"
    assert result.speakers_count is None
