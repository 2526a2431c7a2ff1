"""Core modules for the longscribe transcription pipeline.

Modules:
- audio_utils: duration probing, chunk planning and ffmpeg splitting
- timecodes: HH:MM:SS parsing, offsetting and normalization
- response_format: validation and repair of the model's JSON output
- gemini_client: Gemini upload/poll/generate with retries per chunk
- process_long_audio: windowed concurrent pipeline and result merging
- task_store: task persistence (in-memory and Directus)
- export: SRT and text document rendering
"""
