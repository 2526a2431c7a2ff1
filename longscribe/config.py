"""Pipeline configuration: defaults, JSON overrides and environment."""

import json
import os
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = "config.json"

# 10 minutes keeps a chunk's transcript under the model's output-token ceiling.
DEFAULT_CHUNK_DURATION_S = 600


@dataclass
class TranscriptionConfig:
    """Tunable settings for chunking, dispatch and retries."""
    chunk_duration_s: int = DEFAULT_CHUNK_DURATION_S
    concurrency: int = 2
    max_retries: int = 2
    poll_interval_s: float = 2.0
    poll_max_attempts: int = 60
    backoff_base_s: float = 2.0
    model: str = "gemini-2.0-flash"
    tmp_dir: Optional[str] = None
    api_key: Optional[str] = None

    def validate(self) -> "TranscriptionConfig":
        if self.chunk_duration_s <= 0:
            raise ConfigurationError("chunk_duration_s must be > 0")
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be >= 1")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.poll_max_attempts < 1:
            raise ConfigurationError("poll_max_attempts must be >= 1")
        if self.poll_interval_s < 0 or self.backoff_base_s < 0:
            raise ConfigurationError("poll_interval_s and backoff_base_s must be >= 0")
        return self

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        return self.api_key


def load_config(path: Optional[str] = None) -> TranscriptionConfig:
    """Load configuration from an optional JSON file and the environment.

    Keys in the JSON file matching ``TranscriptionConfig`` fields override
    the defaults; unrelated keys (e.g. ``audio_path``) are ignored. The API
    key always comes from ``GEMINI_API_KEY`` unless the file sets ``api_key``.
    """
    load_dotenv()
    overrides = {}
    if path:
        if not os.path.isfile(path):
            raise ConfigurationError(f"Configuration file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Invalid configuration in {path}: root must be an object")
        known = {f.name for f in fields(TranscriptionConfig)}
        overrides = {k: v for k, v in raw.items() if k in known and v is not None}

    cfg = TranscriptionConfig(**overrides)
    if not cfg.api_key:
        cfg.api_key = os.environ.get("GEMINI_API_KEY") or None
    try:
        cfg.chunk_duration_s = int(cfg.chunk_duration_s)
        cfg.concurrency = int(cfg.concurrency)
        cfg.max_retries = int(cfg.max_retries)
        cfg.poll_max_attempts = int(cfg.poll_max_attempts)
        cfg.poll_interval_s = float(cfg.poll_interval_s)
        cfg.backoff_base_s = float(cfg.backoff_base_s)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid numeric configuration value: {e}") from e
    return cfg.validate()
