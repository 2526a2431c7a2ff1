"""Main entry point for the transcription pipeline."""

import asyncio
import json
import logging
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass

from longscribe.audio_utils import guess_mime_type
from longscribe.config import DEFAULT_CONFIG_PATH, load_config
from longscribe.exceptions import ConfigurationError
from longscribe.export import build_document_lines, normalize_segments, write_document, write_srt
from longscribe.log_setup import setup_logging
from longscribe.models import Task, TaskStatus
from longscribe.process_long_audio import TranscriptionPipeline
from longscribe.task_store import DirectusTaskStore, InMemoryTaskStore, TaskStore


@dataclass
class RunOptions:
    """Input/output settings of a command-line run."""
    audio_path: str
    output_dir: str = "output"
    with_timestamps: bool = True
    verbose: bool = False


def load_run_options(path: str = DEFAULT_CONFIG_PATH) -> RunOptions:
    """Load the run options (not the pipeline settings) from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        cfg = json.load(f)
    audio_path = cfg.get("audio_path")
    if not audio_path:
        raise ValueError("audio_path must be specified in config")
    return RunOptions(
        audio_path=audio_path,
        output_dir=cfg.get("output_dir", "output"),
        with_timestamps=bool(cfg.get("with_timestamps", True)),
        verbose=bool(cfg.get("verbose", False)),
    )


def _select_task_store() -> TaskStore:
    try:
        return DirectusTaskStore.from_env()
    except ConfigurationError:
        return InMemoryTaskStore()


async def _run(options: RunOptions, config_path: str) -> str:
    config = load_config(config_path)
    if not os.path.isfile(options.audio_path):
        raise FileNotFoundError(f"Audio file not found: {options.audio_path}")

    file_name = os.path.basename(options.audio_path)
    mime_type = guess_mime_type(file_name)
    # The pipeline consumes its source file, so it works on a staged copy
    staging_dir = tempfile.mkdtemp(prefix="longscribe_")
    staged_path = shutil.copy2(options.audio_path, os.path.join(staging_dir, file_name))
    store = _select_task_store()
    task_id = await store.create_task(
        {
            "file_name": file_name,
            "file_path": staged_path,
            "mime_type": mime_type,
            "status": TaskStatus.PROCESSING.value,
        }
    )
    logging.getLogger(__name__).info(f"[TASK] created {task_id} for {file_name}")

    pipeline = TranscriptionPipeline(config, store)
    try:
        await pipeline.run(task_id, staged_path, file_name, mime_type)
    finally:
        shutil.rmtree(staging_dir, ignore_errors=True)

    task = Task.from_record(await store.get_task(task_id))
    if task.status != TaskStatus.COMPLETED or task.result is None:
        raise RuntimeError(f"Transcription failed: {task.error_message or 'unknown error'}")

    os.makedirs(options.output_dir, exist_ok=True)
    base = os.path.splitext(file_name)[0]
    segments = normalize_segments(task.result.segments)
    srt_path = write_srt(os.path.join(options.output_dir, base + ".srt"), segments)
    write_document(
        os.path.join(options.output_dir, base + ".txt"),
        build_document_lines(segments, options.with_timestamps, task.result.summary),
    )
    return srt_path


def run_from_config(config_path: str = DEFAULT_CONFIG_PATH) -> str:
    """Run one transcription described by a JSON config and write SRT + text outputs."""
    options = load_run_options(config_path)
    setup_logging(logging.DEBUG if options.verbose else logging.INFO)
    return asyncio.run(_run(options, config_path))


if __name__ == "__main__":
    out_path = run_from_config(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CONFIG_PATH)
    print(f"SRT: {out_path}")
